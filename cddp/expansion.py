"""Q-function expansion at a single knot point"""

from typing import Optional, Tuple
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array
import jax.numpy as jnp

from cddp.types import *


def stage_expansion(
    cost,
    x: Array,
    u: Array,
    dt: float,
    dims: Dimensions,
    params: BackwardPassParams,
) -> QDerivatives:
    """
    Cost-only part of the Q-function in augmented dimensions.

    The cost is evaluated on the true state and control slices and scaled by dt.
    In minimum time mode dt = h^2 with h the time control, which adds the h cross
    terms; in infeasible mode the slack block gets a diagonal quadratic penalty.
    """
    n, m, nn, mm = dims.n, dims.m, dims.nn, dims.mm
    xs = x[dims.x]
    us = u[dims.u]

    if params.minimum_time:
        h = u[dims.time_index]
        dt = h ** 2

    lxx, luu, lux, lx, lu = cost.taylor_expansion(xs, us)

    Qx = jnp.zeros(nn).at[:n].set(dt * lx)
    Qu = jnp.zeros(mm).at[:m].set(dt * lu)
    Qxx = jnp.zeros((nn, nn)).at[:n, :n].set(dt * lxx)
    Quu = jnp.zeros((mm, mm)).at[:m, :m].set(dt * luu)
    Qux = jnp.zeros((mm, nn)).at[:m, :n].set(dt * lux)

    if params.minimum_time:
        tm = dims.time_index
        l = cost.stage_cost(xs, us)
        R_minimum_time = params.R_minimum_time
        tmp = 2 * h * lu

        Qu = Qu.at[tm].set(2 * h * (l + R_minimum_time))
        Quu = Quu.at[:m, tm].set(tmp)
        Quu = Quu.at[tm, :m].set(tmp)
        Quu = Quu.at[tm, tm].set(2 * (l + R_minimum_time))
        Qux = Qux.at[tm, :n].set(2 * h * lx)

    if params.infeasible:
        sl = dims.slack
        R_infeasible = params.R_infeasible * jnp.eye(n)
        Qu = Qu.at[sl].set(R_infeasible @ u[sl])
        Quu = Quu.at[sl, sl].set(R_infeasible)

    return QDerivatives(Qx=Qx, Qu=Qu, Qxx=Qxx, Quu=Quu, Qux=Qux)


def add_dynamics(
    q: QDerivatives,
    fdx: Array,
    fdu: Array,
    S: Array,
    s: Array,
) -> QDerivatives:
    """Back-propagate the next step cost-to-go through the linearized dynamics."""
    return QDerivatives(
        Qx=q.Qx + fdx.T @ s,
        Qu=q.Qu + fdu.T @ s,
        Qxx=q.Qxx + fdx.T @ S @ fdx,
        Quu=q.Quu + fdu.T @ S @ fdu,
        Qux=q.Qux + fdu.T @ S @ fdx,
    )


def constraint_gradient_weight(con: ConstraintData) -> Array:
    # Iμ C + λ
    return con.Imu @ con.C + con.lam


def add_constraints(q: QDerivatives, con: ConstraintData) -> QDerivatives:
    """Augmented Lagrangian penalty terms for one knot point."""
    w = constraint_gradient_weight(con)
    return QDerivatives(
        Qx=q.Qx + con.Cx.T @ w,
        Qu=q.Qu + con.Cu.T @ w,
        Qxx=q.Qxx + con.Cx.T @ con.Imu @ con.Cx,
        Quu=q.Quu + con.Cu.T @ con.Imu @ con.Cu,
        Qux=q.Qux + con.Cu.T @ con.Imu @ con.Cx,
    )


def q_expansion(
    cost,
    x: Array,
    u: Array,
    fdx: Array,
    fdu: Array,
    S: Array,
    s: Array,
    dt: float,
    dims: Dimensions,
    params: BackwardPassParams,
    con: Optional[ConstraintData] = None,
) -> QDerivatives:
    """Full Q-function expansion: stage cost + cost-to-go + constraint penalty."""
    q = stage_expansion(cost, x, u, dt, dims, params)
    q = add_dynamics(q, fdx, fdu, S, s)
    if con is not None:
        q = add_constraints(q, con)
    return q


def terminal_expansion(
    cost,
    x: Array,
    dims: Dimensions,
    con: Optional[ConstraintData] = None,
) -> Tuple[Array, Array]:
    """Terminal cost-to-go (S[N], s[N]) in augmented state dimensions."""
    n, nn = dims.n, dims.nn
    lxx, lx = cost.terminal_expansion(x[dims.x])
    S = jnp.zeros((nn, nn)).at[:n, :n].set(lxx)
    s = jnp.zeros(nn).at[:n].set(lx)

    if con is not None:
        S = S + con.Cx.T @ con.Imu @ con.Cx
        s = s + con.Cx.T @ constraint_gradient_weight(con)

    return S, s
