import logging
from functools import partial
import jax.numpy as jnp

from cddp.base import Solver, backwardpass
from cddp.costs import QuadraticCost
from cddp.types import ModelParams, RegularizationType
from cddp.utils import trajectory_jacobians
from models import double_integrator

logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s: %(message)s")

# Define model parameters (example values)
state_dim = 2
input_dim = 1
horizon_len = 10
dt = 0.1

modelparams = ModelParams(
    state_dim=state_dim,
    input_dim=input_dim,
    horizon_len=horizon_len,
    dt=dt
)

# Define initial and goal states
x0 = jnp.array([1.0, 0.0])
xg = jnp.array([0.0, 0.0])

# Define cost matrices
Q = 1 * jnp.eye(state_dim)
R = 0.1 * jnp.eye(input_dim)
Qf = 10 * jnp.eye(state_dim)

cost = QuadraticCost(Q=Q, R=R, Qf=Qf, xg=xg)
dynamics = partial(double_integrator, params={"dt": dt})

# Nominal rollout with zero control
Us = jnp.zeros((horizon_len - 1, input_dim))
Xs = [x0]
for u in Us:
    Xs.append(dynamics(Xs[-1], u))
Xs = jnp.stack(Xs)
fdx, fdu = trajectory_jacobians(dynamics, Xs, Us)

for square_root in (False, True):
    solver = Solver(cost, modelparams, square_root=square_root,
                    bp_reg_type=RegularizationType.CONTROL)
    results = solver.init_results(Xs, Us, fdx, fdu)
    dV = backwardpass(results, solver)

    print("Backward pass:", solver.params.algo_type)
    print("K[N-1]:", results.K[-1])
    print("d[N-1]:", results.d[-1])
    print("dV:", dV)
    print("rho:", results.rho)
