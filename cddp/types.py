import jax
from jax import config
config.update("jax_enable_x64", True)
from typing import NamedTuple, Callable, Optional, Tuple
from jax import Array
from enum import Enum

# region: Problem Definition

class ModelParams(NamedTuple):
    """Model Parameters"""

    state_dim: int
    input_dim: int
    horizon_len: int
    dt: float

StageCostFn = Callable[[Array, Array], Array]
TerminalCostFn = Callable[[Array], Array]
DynamicsFn = Callable[[Array, Array], Array]

# (Lxx, Luu, Lux, Lx, Lu)
StageExpansion = Tuple[Array, Array, Array, Array, Array]
# (Lxx, Lx)
TerminalExpansion = Tuple[Array, Array]

# endregion: Problem Definition

# region: Backward Pass Parameters

class BackwardPassName(Enum):
    STANDARD = "Standard: dense cost-to-go propagation"
    SQUARE_ROOT = "Square root: Cholesky/QR factored cost-to-go propagation"

class RegularizationType(Enum):
    STATE = "state"
    CONTROL = "control"

class BackwardPassParams:
    """
    Backward pass parameters
        square_root: propagate the cost-to-go in factored form
        bp_reg_type: regularize through the dynamics (state) or directly on Quu (control)
        bp_reg_initial: starting value of the regularization scalar rho
        bp_reg_increase_factor: rho multiplier on a failed sweep
        bp_reg_decrease_factor: rho divisor after a completed sweep
        bp_reg_min: floor applied on increase; rho below it is zeroed on decrease
        bp_reg_max: rho above this is a fatal solver failure
        bp_max_restarts: hard cap on regularization restarts within one call
        bp_sqrt_pivot_tol: smallest accepted pivot of the regularized control factor
        bp_sqrt_psd_rtol: negative eigenvalues within this fraction of the largest one are
            treated as round-off when factoring a semidefinite block
        minimum_time: the last true control is the square root of the time step
        infeasible: n extra slack controls absorb dynamics infeasibility
        R_minimum_time: weight on the time step in minimum time mode
        R_infeasible: weight on the infeasible slack controls
    """
    def __init__(self,
                 square_root: bool = False,
                 bp_reg_type: RegularizationType = RegularizationType.CONTROL,
                 bp_reg_initial: float = 0.0,
                 bp_reg_increase_factor: float = 4.0,
                 bp_reg_decrease_factor: float = 20.0,
                 bp_reg_min: float = 1e-6,
                 bp_reg_max: float = 1e8,
                 bp_max_restarts: int = 100,
                 bp_sqrt_pivot_tol: float = 1e-10,
                 bp_sqrt_psd_rtol: float = 1e-10,
                 minimum_time: bool = False,
                 infeasible: bool = False,
                 R_minimum_time: float = 1.0,
                 R_infeasible: float = 1e3,
                 ):
        self.square_root = square_root
        self.bp_reg_type = RegularizationType(bp_reg_type)
        self.bp_reg_initial = bp_reg_initial
        self.bp_reg_increase_factor = bp_reg_increase_factor
        self.bp_reg_decrease_factor = bp_reg_decrease_factor
        self.bp_reg_min = bp_reg_min
        self.bp_reg_max = bp_reg_max
        self.bp_max_restarts = bp_max_restarts
        self.bp_sqrt_pivot_tol = bp_sqrt_pivot_tol
        self.bp_sqrt_psd_rtol = bp_sqrt_psd_rtol
        self.minimum_time = minimum_time
        self.infeasible = infeasible
        self.R_minimum_time = R_minimum_time
        self.R_infeasible = R_infeasible

    @property
    def algo_type(self) -> BackwardPassName:
        return BackwardPassName.SQUARE_ROOT if self.square_root else BackwardPassName.STANDARD

# endregion: Backward Pass Parameters

# region: Backward Pass Data Structures

class Dimensions(NamedTuple):
    """
    True and augmented problem sizes.

    The augmented control is laid out as [u (m) | h (1, minimum time) | slack (n, infeasible)]
    and the augmented state as [x (n) | time state (1, minimum time)].
    """
    n: int    # true state dim
    m: int    # true control dim
    N: int    # number of knot points
    nn: int   # augmented state dim
    mm: int   # augmented control dim
    minimum_time: bool
    infeasible: bool

    @property
    def x(self) -> slice:
        return slice(0, self.n)

    @property
    def u(self) -> slice:
        return slice(0, self.m)

    @property
    def m_bar(self) -> int:
        # controls before the infeasible slack block
        return self.m + int(self.minimum_time)

    @property
    def time_index(self) -> int:
        if not self.minimum_time:
            raise AttributeError("time_index is only defined in minimum time mode")
        return self.m

    @property
    def slack(self) -> slice:
        if not self.infeasible:
            raise AttributeError("slack is only defined in infeasible mode")
        return slice(self.m_bar, self.m_bar + self.n)

class QDerivatives(NamedTuple):
    Qx: Array # (nn,)
    Qu: Array # (mm,)
    Qxx: Array # (nn, nn)
    Quu: Array # (mm, mm)
    Qux: Array # (mm, nn)

class QBuffers(NamedTuple): # Q-expansion along the complete trajectory, rebuilt every sweep
    Qx: Array # (N-1, nn)
    Qu: Array # (N-1, mm)
    Qxx: Array # (N-1, nn, nn)
    Quu: Array # (N-1, mm, mm)
    Qux: Array # (N-1, mm, nn)
    Quu_reg: Array # (N-1, mm, mm)
    Qux_reg: Array # (N-1, mm, nn)

class ConstraintData(NamedTuple):
    C: Array # (N, p)
    Cx: Array # (N, p, nn)
    Cu: Array # (N, p, mm), terminal row unused
    Imu: Array # (N, p, p)
    lam: Array # (N, p)

class Gains(NamedTuple):
    K: Array # (mm, nn)
    d: Array # (mm,)

class SweepOutput(NamedTuple):
    success: Array # bool
    dV: Array # (2,)
    K: Array # (N-1, mm, nn)
    d: Array # (N-1, mm)
    S: Array # (N, nn, nn) or (N, nn+mm, nn) in square root form
    s: Array # (N, nn)
    bp: QBuffers
    indefinite: Array # bool, a step met a block with no real factor

# endregion: Backward Pass Data Structures
