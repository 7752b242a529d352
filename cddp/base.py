"""Solver definition, results containers and the backward pass driver"""

import logging
from typing import Optional
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array
from jax.typing import ArrayLike
import jax.numpy as jnp

from cddp.types import *
from cddp.errors import BackwardPassError, BackwardPassConfigError
from cddp.regularization import regularization_update
from cddp.backwardpass import _backwardpass, _backwardpass_sqrt

logger = logging.getLogger(__name__)


def get_dimensions(modelparams: ModelParams, params: BackwardPassParams) -> Dimensions:
    n = modelparams.state_dim
    m = modelparams.input_dim
    nn = n + int(params.minimum_time)
    mm = m + int(params.minimum_time) + n * int(params.infeasible)
    return Dimensions(
        n=n, m=m, N=modelparams.horizon_len, nn=nn, mm=mm,
        minimum_time=params.minimum_time, infeasible=params.infeasible,
    )


class Solver:
    """
    Everything the backward pass reads but never writes: the cost oracle, problem
    sizes and options. Passed to the jitted sweeps as a static argument, so it
    should not be mutated after the first call.
    """
    def __init__(
        self,
        cost,
        modelparams: ModelParams,
        params: Optional[BackwardPassParams] = None,
        **kwargs,
    ):
        self.cost = cost
        self.modelparams = modelparams
        self.params = params if params is not None else BackwardPassParams(**kwargs)
        if self.params.square_root and self.params.minimum_time:
            raise BackwardPassConfigError(
                "Square root backward pass does not support minimum time mode")
        if modelparams.horizon_len < 2:
            raise BackwardPassConfigError(
                f"horizon_len must be at least 2, got {modelparams.horizon_len}")
        self.dims = get_dimensions(modelparams, self.params)

    def init_results(
        self,
        X: ArrayLike,
        U: ArrayLike,
        fdx: ArrayLike,
        fdu: ArrayLike,
        **constraints,
    ) -> "SolverResults":
        """Results seeded with bp_reg_initial; constraint arrays select the constrained variant."""
        rho = self.params.bp_reg_initial
        if constraints:
            return ConstrainedSolverResults(X, U, fdx, fdu, rho=rho, **constraints)
        return SolverResults(X, U, fdx, fdu, rho=rho)


class SolverResults:
    """
    Per-iteration trajectory data. The backward pass reads X, U, fdx, fdu and rho
    and overwrites K, d, S, s and bp after a completed sweep.
    """
    constrained = False

    def __init__(
        self,
        X: ArrayLike,  # (N, nn)
        U: ArrayLike,  # (N-1, mm)
        fdx: ArrayLike,  # (N-1, nn, nn)
        fdu: ArrayLike,  # (N-1, nn, mm)
        rho: float = 0.0,
    ):
        self.X = jnp.asarray(X, dtype=float)
        self.U = jnp.asarray(U, dtype=float)
        self.fdx = jnp.asarray(fdx, dtype=float)
        self.fdu = jnp.asarray(fdu, dtype=float)
        if self.X.ndim != 2 or self.U.ndim != 2:
            raise BackwardPassConfigError(
                f"X and U must be 2-D, got shapes {self.X.shape} and {self.U.shape}")
        N, nn = self.X.shape
        mm = self.U.shape[-1]
        self.K = jnp.zeros((N - 1, mm, nn))
        self.d = jnp.zeros((N - 1, mm))
        self.S = jnp.zeros((N, nn, nn))
        self.s = jnp.zeros((N, nn))
        self.bp: Optional[QBuffers] = None
        self.rho = float(rho)
        self.bp_restarts = 0

    def constraint_data(self) -> Optional[ConstraintData]:
        return None


class ConstrainedSolverResults(SolverResults):
    """Adds augmented Lagrangian data: residuals, Jacobians, penalties and multipliers."""
    constrained = True

    def __init__(
        self,
        X: ArrayLike,
        U: ArrayLike,
        fdx: ArrayLike,
        fdu: ArrayLike,
        C: ArrayLike,  # (N, p)
        Cx: ArrayLike,  # (N, p, nn)
        Cu: ArrayLike,  # (N, p, mm)
        Imu: ArrayLike,  # (N, p, p)
        lam: ArrayLike,  # (N, p)
        rho: float = 0.0,
    ):
        super().__init__(X, U, fdx, fdu, rho=rho)
        self.C = jnp.asarray(C, dtype=float)
        self.Cx = jnp.asarray(Cx, dtype=float)
        self.Cu = jnp.asarray(Cu, dtype=float)
        self.Imu = jnp.asarray(Imu, dtype=float)
        self.lam = jnp.asarray(lam, dtype=float)

    def constraint_data(self) -> ConstraintData:
        return ConstraintData(C=self.C, Cx=self.Cx, Cu=self.Cu, Imu=self.Imu, lam=self.lam)


def _check_shape(name: str, array: Optional[Array], expected: tuple):
    if array is None:
        raise BackwardPassConfigError(f"{name} is missing")
    if tuple(array.shape) != expected:
        raise BackwardPassConfigError(
            f"{name} has shape {tuple(array.shape)}, expected {expected}")


def check_preconditions(results: SolverResults, solver: Solver):
    """Validate sizes against the augmented dimensions before running a sweep."""
    dims = solver.dims
    N, nn, mm = dims.N, dims.nn, dims.mm

    _check_shape("X", results.X, (N, nn))
    _check_shape("U", results.U, (N - 1, mm))
    _check_shape("fdx", results.fdx, (N - 1, nn, nn))
    _check_shape("fdu", results.fdu, (N - 1, nn, mm))

    if results.constrained:
        C = getattr(results, "C", None)
        if C is None or C.ndim != 2:
            raise BackwardPassConfigError("Constrained results require C with shape (N, p)")
        p = C.shape[1]
        _check_shape("C", C, (N, p))
        _check_shape("Cx", getattr(results, "Cx", None), (N, p, nn))
        _check_shape("Cu", getattr(results, "Cu", None), (N, p, mm))
        _check_shape("Imu", getattr(results, "Imu", None), (N, p, p))
        _check_shape("lam", getattr(results, "lam", None), (N, p))


def backwardpass(results: SolverResults, solver: Solver) -> Array:
    """
    Solve the dynamic programming problem, starting from the terminal time step.

    Computes the gains K and d by applying the principle of optimality at each
    time step, along with the cost-to-go (S, s), and returns dV = [Σ dᵀQu, Σ ½dᵀQuu d]
    for the line search. A non positive definite regularized Quu increases
    results.rho and restarts the sweep from the terminal step; a completed sweep
    decreases rho once. Gains are written to results only after a completed sweep.
    """
    check_preconditions(results, solver)

    if solver.params.algo_type == BackwardPassName.SQUARE_ROOT:
        sweep = _backwardpass_sqrt
    elif solver.params.algo_type == BackwardPassName.STANDARD:
        sweep = _backwardpass
    else:
        raise ValueError(f"Unknown backward pass: {solver.params.algo_type}")

    con = results.constraint_data() if results.constrained else None

    restarts = 0
    while True:
        out = sweep(results.X, results.U, results.fdx, results.fdu, results.rho, con, solver)
        if bool(out.success):
            break
        if bool(out.indefinite):
            logger.error("Square root backward pass met an indefinite Hessian block")
            raise BackwardPassError(
                "Indefinite Hessian block has no square root factor; "
                "regularization cannot fix it, use the standard backward pass")
        if restarts >= solver.params.bp_max_restarts:
            logger.error("Backward pass failed after %d regularization restarts", restarts)
            raise BackwardPassError(
                f"Backward pass did not complete within {restarts} regularization restarts")
        logger.debug("Fixing Quu with regularization")
        regularization_update(results, solver, "increase")
        restarts += 1

    results.K = out.K
    results.d = out.d
    results.S = out.S
    results.s = out.s
    results.bp = out.bp
    results.bp_restarts = restarts
    if restarts > 0:
        logger.info("Backward pass completed after %d regularization restart(s), rho=%.3e",
                    restarts, results.rho)

    regularization_update(results, solver, "decrease")

    return out.dV
