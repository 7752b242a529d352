"""Backward pass exceptions"""


class BackwardPassError(RuntimeError):
    """The backward pass could not produce a valid set of gains."""


class MaxRegularizationExceeded(BackwardPassError):
    """Regularization grew past its ceiling; the trajectory cannot be stabilized."""

    def __init__(self, rho: float, rho_max: float):
        self.rho = rho
        self.rho_max = rho_max
        super().__init__(f"Max regularization exceeded: rho={rho:.3e} > bp_reg_max={rho_max:.3e}")


class BackwardPassConfigError(ValueError):
    """Inputs or options are inconsistent; raised before any sweep runs."""
