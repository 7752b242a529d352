"""Pendulum models"""

from typing import Any, Optional
from jax import Array
import jax.numpy as jnp

# region: Models

def pendulum(x: Array, u: Array, params: Optional[Any] = None) -> Array:
    """
    Pendulum model, theta = 0 hanging down, explicit Euler step.
    """
    m = params["m"] if params and "m" in params else 1.0
    l = params["l"] if params and "l" in params else 1.0
    g = params["g"] if params and "g" in params else 9.81
    b = params["b"] if params and "b" in params else 0.1
    dt = params["dt"] if params and "dt" in params else 0.01

    theta_ddot = (u[0] - m * g * l * jnp.sin(x[0]) - b * x[1]) / (m * l ** 2)
    xnext = x + dt * jnp.array([x[1], theta_ddot])
    return xnext

# endregion: Models
