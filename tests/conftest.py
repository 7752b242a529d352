"""Shared double integrator problem for the backward pass tests."""

from functools import partial

import jax.numpy as jnp
import numpy as np
import pytest

from cddp.base import Solver
from cddp.costs import QuadraticCost
from cddp.types import ModelParams
from cddp.utils import trajectory_jacobians
from models import double_integrator

N = 10
DT = 0.1


def rollout(dynamics, x0, Us):
    xs = [jnp.asarray(x0, dtype=float)]
    for u in Us:
        xs.append(dynamics(xs[-1], u))
    return jnp.stack(xs)


@pytest.fixture
def modelparams():
    return ModelParams(state_dim=2, input_dim=1, horizon_len=N, dt=DT)


@pytest.fixture
def lqr_cost():
    return QuadraticCost(Q=np.eye(2), R=0.1 * np.eye(1), Qf=10.0 * np.eye(2), xg=np.zeros(2))


@pytest.fixture
def di_dynamics():
    return partial(double_integrator, params={"dt": DT})


@pytest.fixture
def di_trajectory(di_dynamics):
    """Nominal rollout from x0 = [1, 0] with a small constant control."""
    Us = 0.2 * jnp.ones((N - 1, 1))
    Xs = rollout(di_dynamics, [1.0, 0.0], Us)
    fdx, fdu = trajectory_jacobians(di_dynamics, Xs, Us)
    return Xs, Us, fdx, fdu


@pytest.fixture
def make_solver(modelparams, lqr_cost):
    def _make(cost=None, **kwargs):
        return Solver(cost if cost is not None else lqr_cost, modelparams, **kwargs)
    return _make
