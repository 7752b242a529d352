"""Cost functions and their second order expansions"""

from typing import Optional
import jax
from jax import config
config.update("jax_enable_x64", True)
from jax import Array
import jax.numpy as jnp
from jax.typing import ArrayLike

from cddp.types import StageCostFn, TerminalCostFn, StageExpansion, TerminalExpansion

# region: Cost Expansions

class QuadraticCost:
    """
    l(x, u) = 0.5 (x-xg)^T Q (x-xg) + 0.5 u^T R u + u^T H (x-xg)
    lf(x)   = 0.5 (x-xg)^T Qf (x-xg)

    The expansion is exact and computed in closed form.
    """
    def __init__(
        self,
        Q: ArrayLike,
        R: ArrayLike,
        Qf: ArrayLike,
        xg: Optional[ArrayLike] = None,
        H: Optional[ArrayLike] = None,
    ):
        self.Q = jnp.array(Q, dtype=float)
        self.R = jnp.array(R, dtype=float)
        self.Qf = jnp.array(Qf, dtype=float)
        n = self.Q.shape[0]
        m = self.R.shape[0]
        self.xg = jnp.array(xg, dtype=float) if xg is not None else jnp.zeros(n)
        self.H = jnp.array(H, dtype=float) if H is not None else jnp.zeros((m, n))

    def stage_cost(self, x: Array, u: Array) -> Array:
        dx = x - self.xg
        return 0.5 * dx @ self.Q @ dx + 0.5 * u @ self.R @ u + u @ self.H @ dx

    def terminal_cost(self, x: Array) -> Array:
        dx = x - self.xg
        return 0.5 * dx @ self.Qf @ dx

    def taylor_expansion(self, x: Array, u: Array) -> StageExpansion:
        dx = x - self.xg
        lx = self.Q @ dx + self.H.T @ u
        lu = self.R @ u + self.H @ dx
        return self.Q, self.R, self.H, lx, lu

    def terminal_expansion(self, x: Array) -> TerminalExpansion:
        return self.Qf, self.Qf @ (x - self.xg)


class GenericCost:
    """
    Any JAX traceable running cost l(x, u) and terminal cost lf(x), expanded by
    automatic differentiation.
    """
    def __init__(self, runningcost: StageCostFn, terminalcost: TerminalCostFn):
        self.runningcost = runningcost
        self.terminalcost = terminalcost
        self.gradrunningcost = jax.grad(runningcost, argnums=(0, 1))
        self.hessianrunningcost = jax.hessian(runningcost, argnums=(0, 1))
        self.gradterminalcost = jax.grad(terminalcost)
        self.hessianterminalcost = jax.hessian(terminalcost)

    def stage_cost(self, x: Array, u: Array) -> Array:
        return self.runningcost(x, u)

    def terminal_cost(self, x: Array) -> Array:
        return self.terminalcost(x)

    def taylor_expansion(self, x: Array, u: Array) -> StageExpansion:
        lx, lu = self.gradrunningcost(x, u)
        (lxx, _lxu), (lux, luu) = self.hessianrunningcost(x, u)
        return lxx, luu, lux, lx, lu

    def terminal_expansion(self, x: Array) -> TerminalExpansion:
        return self.hessianterminalcost(x), self.gradterminalcost(x)

# endregion: Cost Expansions
