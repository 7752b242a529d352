"""Standard and square root DDP backward sweeps"""

from typing import Optional, TYPE_CHECKING
from functools import partial
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array, lax
import jax.numpy as jnp
import jax.scipy.linalg as jsp

from cddp.types import *
from cddp.utils import symmetrize, is_posdef, cholesky_upper, chol_plus
from cddp.expansion import (
    stage_expansion,
    add_dynamics,
    add_constraints,
    constraint_gradient_weight,
    terminal_expansion,
)
from cddp.regularization import regularize, regularize_sqrt

if TYPE_CHECKING:
    from cddp.base import Solver


def _split_constraints(con: Optional[ConstraintData]):
    if con is None:
        return None, None
    stage = jax.tree_util.tree_map(lambda a: a[:-1], con)
    terminal = jax.tree_util.tree_map(lambda a: a[-1], con)
    return stage, terminal


def _empty_step(dims: Dimensions):
    """Placeholder outputs for steps that are not computed after a failed step."""
    nn, mm = dims.nn, dims.mm
    K = jnp.zeros((mm, nn))
    d = jnp.zeros((mm,))
    q = QBuffers(
        Qx=jnp.zeros((nn,)),
        Qu=jnp.zeros((mm,)),
        Qxx=jnp.zeros((nn, nn)),
        Quu=jnp.zeros((mm, mm)),
        Qux=jnp.zeros((mm, nn)),
        Quu_reg=jnp.zeros((mm, mm)),
        Qux_reg=jnp.zeros((mm, nn)),
    )
    return K, d, q


@partial(jax.jit, static_argnames=("solver",))
def _backwardpass(
    Xs: Array,  # (N, nn)
    Us: Array,  # (N-1, mm)
    fdxs: Array,  # (N-1, nn, nn)
    fdus: Array,  # (N-1, nn, mm)
    rho: float,
    con: Optional[ConstraintData],
    solver: "Solver",
) -> SweepOutput:
    """
    Dense backward sweep with regularized gain solve, eigenvalue PD check
    and accumulation of the expected cost decrease dV.

    The sweep stops computing at the first step whose regularized Quu is not
    positive definite and reports success=False; the caller restarts it.
    """
    cost = solver.cost
    dims = solver.dims
    params = solver.params
    dt = solver.modelparams.dt

    con_stage, con_terminal = _split_constraints(con)

    # Boundary conditions
    SN, sN = terminal_expansion(cost, Xs[-1], dims, con_terminal)

    scaninputs = (Xs[:-1], Us, fdxs, fdus, con_stage)
    init_scanstate = (jnp.zeros(2), sN, SN, jnp.array(True))

    def backward_step(scanstate, scaninput):
        dV, s, S, success = scanstate
        x, u, fdx, fdu, c = scaninput

        def skip_step(_):
            K, d, q = _empty_step(dims)
            return (dV, s, S, jnp.array(False)), (K, d, s, S, q)

        def compute_step(_):
            q = stage_expansion(cost, x, u, dt, dims, params)
            q = add_dynamics(q, fdx, fdu, S, s)
            if c is not None:
                q = add_constraints(q, c)
            Qx, Qu, Qxx, Quu, Qux = q

            Quu_reg, Qux_reg = regularize(Quu, Qux, fdx, fdu, rho, params.bp_reg_type)
            Quu_reg = symmetrize(Quu_reg)
            buffers = QBuffers(Qx=Qx, Qu=Qu, Qxx=Qxx, Quu=Quu, Qux=Qux,
                               Quu_reg=Quu_reg, Qux_reg=Qux_reg)

            def on_pd(_):
                L = jsp.cholesky(Quu_reg, lower=True)
                K = -jsp.cho_solve((L, True), Qux_reg)
                d = -jsp.cho_solve((L, True), Qu)

                # Cost-to-go uses the unregularized Quu and Qux
                s_new = Qx + K.T @ Quu @ d + K.T @ Qu + Qux.T @ d
                S_new = Qxx + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K
                S_new = symmetrize(S_new)

                dV_new = dV + jnp.array([d @ Qu, 0.5 * d @ Quu @ d])
                return (dV_new, s_new, S_new, jnp.array(True)), (K, d, s_new, S_new, buffers)

            def on_fail(_):
                K, d, _q = _empty_step(dims)
                return (dV, s, S, jnp.array(False)), (K, d, s, S, buffers)

            return lax.cond(
                is_posdef(Quu_reg),
                on_pd,
                on_fail,
                operand=None
            )

        return lax.cond(
            success,
            compute_step,
            skip_step,
            operand=None
        )

    (dV, _s, _S, success), scan_outputs = lax.scan(
        backward_step,
        init=init_scanstate,
        xs=scaninputs,
        reverse=True
    )

    K_seq, d_seq, s_seq, S_seq, bp = scan_outputs
    s_seq = jnp.concatenate([s_seq, sN[None, :]], axis=0)
    S_seq = jnp.concatenate([S_seq, SN[None, :, :]], axis=0)

    return SweepOutput(success=success, dV=dV, K=K_seq, d=d_seq, S=S_seq, s=s_seq, bp=bp,
                       indefinite=jnp.array(False))


@partial(jax.jit, static_argnames=("solver",))
def _backwardpass_sqrt(
    Xs: Array,  # (N, nn)
    Us: Array,  # (N-1, mm)
    fdxs: Array,  # (N-1, nn, nn)
    fdus: Array,  # (N-1, nn, mm)
    rho: float,
    con: Optional[ConstraintData],
    solver: "Solver",
) -> SweepOutput:
    """
    Backward sweep on Cholesky/QR factors of the cost-to-go to avoid ill-conditioning.

    S[k] is carried as Su[k] of shape (nn+mm, nn) with S[k] = Su[k]^T Su[k]: the
    state block sits in the top nn rows, the control contribution below it.
    A step fails when a pivot of the regularized control factor is below
    bp_sqrt_pivot_tol or any gain / factor entry is not finite. It also fails
    when the stage Hessian blocks, the terminal Hessian or the Schur complement
    Quu - Qux Qxx^-1 Qxu is indefinite: no real factor exists and rho does not
    enter those blocks, so the sweep reports indefinite=True instead of asking
    for more regularization.
    """
    cost = solver.cost
    dims = solver.dims
    params = solver.params
    dt = solver.modelparams.dt
    nn, mm = dims.nn, dims.mm
    tol = params.bp_sqrt_pivot_tol
    rtol = params.bp_sqrt_psd_rtol

    con_stage, con_terminal = _split_constraints(con)

    # Boundary conditions
    lxx, sN = terminal_expansion(cost, Xs[-1], dims)
    WN, terminal_ok = cholesky_upper(lxx, rtol)
    if con_terminal is not None:
        Imu_sqrt = jnp.sqrt(con_terminal.Imu)
        WN = chol_plus(WN, Imu_sqrt @ con_terminal.Cx)
        sN = sN + con_terminal.Cx.T @ constraint_gradient_weight(con_terminal)
    SuN = jnp.zeros((nn + mm, nn)).at[:nn, :].set(WN)

    scaninputs = (Xs[:-1], Us, fdxs, fdus, con_stage)
    init_scanstate = (jnp.zeros(2), sN, SuN, terminal_ok, ~terminal_ok)

    def backward_step(scanstate, scaninput):
        dV, s, Su, success, indefinite = scanstate
        x, u, fdx, fdu, c = scaninput

        def skip_step(_):
            K, d, q = _empty_step(dims)
            return (dV, s, Su, jnp.array(False), indefinite), (K, d, s, Su, q)

        def compute_step(_):
            stage = stage_expansion(cost, x, u, dt, dims, params)

            Qx = stage.Qx + fdx.T @ s
            Qu = stage.Qu + fdu.T @ s
            Sfdx = Su @ fdx
            Sfdu = Su @ fdu
            Lxx, xx_ok = cholesky_upper(stage.Qxx, rtol)
            Luu, uu_ok = cholesky_upper(stage.Quu, rtol)
            Wxx = chol_plus(Lxx, Sfdx)
            Wuu = chol_plus(Luu, Sfdu)
            Qux = stage.Qux + Sfdu.T @ Sfdx

            if c is not None:
                Imu_sqrt = jnp.sqrt(c.Imu)
                w = constraint_gradient_weight(c)
                Qx = Qx + c.Cx.T @ w
                Qu = Qu + c.Cu.T @ w
                Wxx = chol_plus(Wxx, Imu_sqrt @ c.Cx)
                Wuu = chol_plus(Wuu, Imu_sqrt @ c.Cu)
                Qux = Qux + c.Cu.T @ c.Imu @ c.Cx

            Wuu_reg, Qux_reg = regularize_sqrt(Wuu, Qux, fdx, fdu, rho, params.bp_reg_type)

            # Gains from two triangular solves: Quu_reg = Wuu_reg^T Wuu_reg
            K = -jsp.solve_triangular(
                Wuu_reg, jsp.solve_triangular(Wuu_reg.T, Qux_reg, lower=True), lower=False)
            d = -jsp.solve_triangular(
                Wuu_reg, jsp.solve_triangular(Wuu_reg.T, Qu, lower=True), lower=False)

            s_new = Qx + (K.T @ Wuu.T) @ (Wuu @ d) + K.T @ Qu + Qux.T @ d

            tmp1 = jsp.solve_triangular(Wxx.T, Qux.T, lower=True)  # (nn, mm)
            tmp2, schur_ok = cholesky_upper(Wuu.T @ Wuu - tmp1.T @ tmp1, rtol)  # (mm, mm)
            Su_new = jnp.vstack([Wxx + tmp1 @ K, tmp2 @ K])

            Wd = Wuu @ d
            dV_new = dV + jnp.array([d @ Qu, 0.5 * Wd @ Wd])

            buffers = QBuffers(Qx=Qx, Qu=Qu, Qxx=Wxx.T @ Wxx, Quu=Wuu.T @ Wuu, Qux=Qux,
                               Quu_reg=Wuu_reg.T @ Wuu_reg, Qux_reg=Qux_reg)

            factors_ok = xx_ok & uu_ok & schur_ok
            pivots_ok = jnp.all(jnp.abs(jnp.diag(Wuu_reg)) > tol)
            finite = (jnp.all(jnp.isfinite(K)) & jnp.all(jnp.isfinite(d))
                      & jnp.all(jnp.isfinite(Su_new)) & jnp.all(jnp.isfinite(s_new)))

            def on_ok(_):
                carry = (dV_new, s_new, Su_new, jnp.array(True), indefinite)
                return carry, (K, d, s_new, Su_new, buffers)

            def on_fail(_):
                K0, d0, _q = _empty_step(dims)
                return (dV, s, Su, jnp.array(False), ~factors_ok), (K0, d0, s, Su, buffers)

            return lax.cond(
                factors_ok & pivots_ok & finite,
                on_ok,
                on_fail,
                operand=None
            )

        return lax.cond(
            success,
            compute_step,
            skip_step,
            operand=None
        )

    (dV, _s, _Su, success, indefinite), scan_outputs = lax.scan(
        backward_step,
        init=init_scanstate,
        xs=scaninputs,
        reverse=True
    )

    K_seq, d_seq, s_seq, Su_seq, bp = scan_outputs
    s_seq = jnp.concatenate([s_seq, sN[None, :]], axis=0)
    Su_seq = jnp.concatenate([Su_seq, SuN[None, :, :]], axis=0)

    return SweepOutput(success=success, dV=dV, K=K_seq, d=d_seq, S=Su_seq, s=s_seq, bp=bp,
                       indefinite=indefinite)
