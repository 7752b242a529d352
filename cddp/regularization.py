"""Backward pass regularization"""

import logging
from typing import Tuple, TYPE_CHECKING
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array
import jax.numpy as jnp

from cddp.types import *
from cddp.errors import MaxRegularizationExceeded
from cddp.utils import chol_plus

if TYPE_CHECKING:
    from cddp.base import SolverResults, Solver

logger = logging.getLogger(__name__)


def regularize(
    Quu: Array,
    Qux: Array,
    fdx: Array,
    fdu: Array,
    rho: float,
    reg_type: RegularizationType,
) -> Tuple[Array, Array]:
    """
    Regularized (Quu, Qux) used only for the gain solve.

    STATE adds rho * fdu^T [fdu fdx], CONTROL adds rho * I to Quu.
    """
    if reg_type == RegularizationType.STATE:
        Quu_reg = Quu + rho * fdu.T @ fdu
        Qux_reg = Qux + rho * fdu.T @ fdx
    elif reg_type == RegularizationType.CONTROL:
        Quu_reg = Quu + rho * jnp.eye(Quu.shape[0])
        Qux_reg = Qux
    else:
        raise ValueError(f"Unknown regularization type: {reg_type}")
    return Quu_reg, Qux_reg


def regularize_sqrt(
    Wuu: Array,
    Qux: Array,
    fdx: Array,
    fdu: Array,
    rho: float,
    reg_type: RegularizationType,
) -> Tuple[Array, Array]:
    """Factored counterpart of `regularize`; Wuu_reg^T Wuu_reg = Quu_reg."""
    if reg_type == RegularizationType.STATE:
        Wuu_reg = chol_plus(Wuu, jnp.sqrt(rho) * fdu)
        Qux_reg = Qux + rho * fdu.T @ fdx
    elif reg_type == RegularizationType.CONTROL:
        Wuu_reg = chol_plus(Wuu, jnp.sqrt(rho) * jnp.eye(Wuu.shape[1]))
        Qux_reg = Qux
    else:
        raise ValueError(f"Unknown regularization type: {reg_type}")
    return Wuu_reg, Qux_reg


def regularization_update(results: "SolverResults", solver: "Solver", status: str) -> float:
    """
    Mutate results.rho.

    "increase": rho <- max(rho * increase_factor, bp_reg_min); raises
    MaxRegularizationExceeded once rho passes bp_reg_max.
    "decrease": rho <- rho / decrease_factor, zeroed below bp_reg_min.
    """
    params = solver.params

    if status == "increase":
        results.rho = max(results.rho * params.bp_reg_increase_factor, params.bp_reg_min)
        logger.debug("Regularization increased to %.3e", results.rho)
        if results.rho > params.bp_reg_max:
            logger.error("Max regularization exceeded (rho=%.3e)", results.rho)
            raise MaxRegularizationExceeded(results.rho, params.bp_reg_max)
    elif status == "decrease":
        rho = results.rho / params.bp_reg_decrease_factor
        results.rho = rho if rho >= params.bp_reg_min else 0.0
        logger.debug("Regularization decreased to %.3e", results.rho)
    else:
        raise ValueError(f"Unknown regularization update: {status}")

    return results.rho
