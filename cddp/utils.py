"""Utility Functions"""

from typing import Callable, Tuple
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array, lax
import jax.numpy as jnp
import jax.scipy.linalg as jsp

# region: Mathematical Functions

def symmetrize(A: Array) -> Array:
    return 0.5 * (A + A.T)

def is_posdef(A: Array) -> Array:
    """Eigenvalue test on the symmetric part of A."""
    eigvals = jnp.linalg.eigvalsh(symmetrize(A))
    return jnp.all(eigvals > 0.0)

def cholesky_upper(A: Array, rtol: float = 1e-10) -> Tuple[Array, Array]:
    """
    Upper triangular U with U.T @ U = A, and a flag that is False when A has no
    real factor.

    When the Cholesky factorization breaks down, negative eigenvalues no larger
    than rtol * max|eig| are round-off on a semidefinite A: they are clamped to
    zero and the factor is re-triangularized by QR. A larger negative eigenvalue
    means A is indefinite and the returned factor must not be used.
    """
    A = symmetrize(A)
    U = jsp.cholesky(A, lower=False)

    def chol_factor(_):
        return U, jnp.array(True)

    def eig_factor(_):
        w, v = jnp.linalg.eigh(A)
        ok = w[0] >= -rtol * jnp.max(jnp.abs(w))
        F = jnp.sqrt(jnp.maximum(w, 0.0))[:, None] * v.T
        return jnp.linalg.qr(F, mode="r"), ok

    return lax.cond(
        jnp.all(jnp.isfinite(U)),
        chol_factor,
        eig_factor,
        operand=None
    )

def chol_plus(A: Array, B: Array) -> Array:
    """
    Factor of A.T @ A + B.T @ B.

    A is (n1, m) upper triangular, B is any (n2, m) block; the result is the
    (m, m) R factor of the QR decomposition of [A; B].
    """
    return jnp.linalg.qr(jnp.vstack([A, B]), mode="r")

# endregion: Mathematical Functions

# region: Trajectory Helpers

def trajectory_jacobians(dynamics: Callable, Xs: Array, Us: Array) -> Tuple[Array, Array]:
    """
    Discrete dynamics Jacobians along a trajectory.

    Returns:
        fdx: (N-1, Nx, Nx)
        fdu: (N-1, Nx, Nu)
    """
    fdx, fdu = jax.vmap(jax.jacrev(dynamics, argnums=(0, 1)))(Xs[:-1], Us)
    return fdx, fdu

def expected_cost_reduction(dV: Array, alpha: float) -> Array:
    """Line search model of the cost decrease for step size alpha."""
    return -(alpha * dV[0] + alpha ** 2 * dV[1])

# endregion: Trajectory Helpers
