"""
Models module for cddp.

Discrete dynamical system models used to build dynamics Jacobians for the backward pass.
"""

from .augmented import augment
from .double_integrator import double_integrator, double_integrator_matrices
from .pendulum import pendulum

__all__ = [
    "augment",
    "double_integrator",
    "double_integrator_matrices",
    "pendulum",
]
