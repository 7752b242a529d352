"""
Pendulum swing-up with a minimal iLQR loop around the backward pass.

The rollout and line search live here, not in the library: they only consume
K, d and dV from `backwardpass`.
"""

import logging
from functools import partial
import jax
import jax.numpy as jnp
from jax import lax

from cddp.base import Solver, backwardpass
from cddp.costs import GenericCost
from cddp.errors import BackwardPassError
from cddp.types import ModelParams
from cddp.utils import trajectory_jacobians, expected_cost_reduction
from models import pendulum

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")

state_dim = 2
input_dim = 1
horizon_len = 200
dt = 0.01

modelparams = ModelParams(state_dim=state_dim, input_dim=input_dim, horizon_len=horizon_len, dt=dt)

x0 = jnp.array([0.0, 0.0])
xg = jnp.array([jnp.pi, 0.0])

params_dynamics = {"m": 1.0, "g": 9.81, "l": 1.0, "b": 0.1, "dt": dt}
Q = 0.1 * jnp.eye(state_dim)
R = 0.01 * jnp.eye(input_dim)
P = 1000.0 * jnp.eye(state_dim)

dynamics = partial(pendulum, params=params_dynamics)


def runningcost(x, u):
    return 0.5 * ((x - xg) @ Q @ (x - xg) + u @ R @ u)


def terminalcost(x):
    return 0.5 * (x - xg) @ P @ (x - xg)


cost = GenericCost(runningcost, terminalcost)
solver = Solver(cost, modelparams, square_root=True, bp_reg_initial=1e-3)


@jax.jit
def forward_pass(Xs, Us, Ks, ds, alpha):
    def dynamics_step(scan_state, scan_input):
        x, traj_cost = scan_state
        x_bar, u_bar, K, d = scan_input
        u = u_bar + K @ (x - x_bar) + alpha * d
        traj_cost = traj_cost + dt * runningcost(x, u)
        nx = dynamics(x, u)
        return (nx, traj_cost), (nx, u)

    (xf, traj_cost), (new_next_Xs, new_Us) = lax.scan(
        dynamics_step, init=(x0, 0.0), xs=(Xs[:-1], Us, Ks, ds)
    )
    new_Xs = jnp.vstack([x0, new_next_Xs])
    return new_Xs, new_Us, traj_cost + terminalcost(xf)


Us = jnp.zeros((horizon_len - 1, input_dim))
Xs, Us, J = forward_pass(jnp.zeros((horizon_len, state_dim)), Us,
                         jnp.zeros((horizon_len - 1, input_dim, state_dim)),
                         jnp.zeros((horizon_len - 1, input_dim)), 1.0)

fdx, fdu = trajectory_jacobians(dynamics, Xs, Us)
results = solver.init_results(Xs, Us, fdx, fdu)

for iteration in range(100):
    try:
        dV = backwardpass(results, solver)
    except BackwardPassError as err:
        print(f"Backward pass failed: {err}")
        break

    accepted = False
    for alpha in 0.5 ** jnp.arange(10):
        Xs_new, Us_new, J_new = forward_pass(results.X, results.U, results.K, results.d, alpha)
        z = (J - J_new) / expected_cost_reduction(dV, alpha)
        if z > 1e-4:
            accepted = True
            break

    if not accepted:
        print("Line search exhausted.")
        break

    change = J - J_new
    J = J_new
    fdx, fdu = trajectory_jacobians(dynamics, Xs_new, Us_new)
    results.X, results.U, results.fdx, results.fdu = Xs_new, Us_new, fdx, fdu
    print(f"Iteration: {iteration}  cost: {J:.6f}  alpha: {alpha:.4f}  rho: {results.rho:.2e}")

    if change < 1e-6:
        print(f"Converged in {iteration + 1} iteration(s).")
        break

print("Final state:", results.X[-1])
