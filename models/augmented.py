"""Minimum time and infeasible start augmentation of discrete models"""

from typing import Any, Callable, Optional
from jax import Array
import jax.numpy as jnp


def augment(
    model: Callable,
    n: int,
    m: int,
    params: Optional[Any] = None,
    minimum_time: bool = False,
    infeasible: bool = False,
) -> Callable[[Array, Array], Array]:
    """
    Wrap model(x, u, params) into augmented dynamics f(xbar, ubar).

    ubar = [u (m) | h (minimum time) | slack (n, infeasible)]
    xbar = [x (n) | h of the previous step (minimum time)]

    In minimum time mode the step is taken with dt = h^2 and h is carried in the
    state; in infeasible mode the slack is added directly to the next state.
    """
    params = dict(params or {})
    m_bar = m + int(minimum_time)

    def dynamics(xbar: Array, ubar: Array) -> Array:
        x = xbar[:n]
        u = ubar[:m]
        p = params
        if minimum_time:
            h = ubar[m]
            p = {**params, "dt": h ** 2}
        xnext = model(x, u, p)
        if infeasible:
            xnext = xnext + ubar[m_bar:m_bar + n]
        if minimum_time:
            xnext = jnp.concatenate([xnext, h[None]])
        return xnext

    return dynamics
