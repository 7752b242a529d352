"""Double integrator models"""

from typing import Any, Optional
from jax import Array
import jax.numpy as jnp

# region: Models

def double_integrator(x: Array, u: Array, params: Optional[Any] = None) -> Array:
    """
    Discrete 1-D double integrator, x = [position, velocity], u = [force / mass].
    Exact zero-order-hold discretization.
    """
    dt = params["dt"] if params and "dt" in params else 0.1

    xnext = jnp.array([
        x[0] + dt * x[1] + 0.5 * dt ** 2 * u[0],
        x[1] + dt * u[0],
    ])
    return xnext

def double_integrator_matrices(dt: float):
    """(A, B) of the linear double integrator, for closed form LQR checks."""
    A = jnp.array([[1.0, dt], [0.0, 1.0]])
    B = jnp.array([[0.5 * dt ** 2], [dt]])
    return A, B

# endregion: Models
