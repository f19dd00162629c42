"""Conjugate-gradient solver for Hermitian positive-definite lattice operators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np
from jax.tree_util import Partial

from jaxhmc.errors import ConvergenceFailure


Array = jax.Array


class SolverResult(NamedTuple):
    x: Array
    iterations: int
    residual: float


def _rdot(a: Array, b: Array) -> Array:
    return jnp.real(jnp.vdot(a, b))


@jax.jit
def _cg_kernel(op, b, x0, tol, maxiter):
    """Plain CG; stops once |r|^2 <= tol^2 |b|^2 or after maxiter iterations."""
    bb = _rdot(b, b)
    target = (tol * tol) * bb
    r0 = b - op(x0)
    rr0 = _rdot(r0, r0)

    def cond(state):
        _, _, _, rr, k = state
        return jnp.logical_and(rr > target, k < maxiter)

    def body(state):
        x, r, p, rr, k = state
        Ap = op(p)
        alpha = rr / _rdot(p, Ap)
        x = x + alpha * p
        r = r - alpha * Ap
        rr_new = _rdot(r, r)
        p = r + (rr_new / rr) * p
        return x, r, p, rr_new, k + 1

    x, _, _, rr, k = jax.lax.while_loop(cond, body, (x0, r0, r0, rr0, jnp.asarray(0, dtype=jnp.int32)))
    # recursive residual can drift from the true one; report the true residual
    r_true = b - op(x)
    return x, k, jnp.sqrt(_rdot(r_true, r_true) / bb), jnp.sqrt(rr / bb)


@dataclass
class ConjugateGradient:
    tol: float = 1e-8
    maxiter: int = 2000
    calls: int = field(default=0, init=False)
    total_iterations: int = field(default=0, init=False)

    def solve(
        self,
        op: Callable[[Array], Array],
        rhs: Array,
        x0: Optional[Array] = None,
        tol: Optional[float] = None,
        maxiter: Optional[int] = None,
    ) -> SolverResult:
        """Solve op(x) = rhs.

        Raises ConvergenceFailure past the iteration cap, or when a singular
        or non-finite operator leaves a non-finite residual.

        `op` should be a `jax.tree_util.Partial` so repeated solves reuse the
        compiled kernel; plain callables are wrapped.
        """
        tol = float(self.tol if tol is None else tol)
        maxiter = int(self.maxiter if maxiter is None else maxiter)
        if not isinstance(op, Partial):
            op = Partial(op)
        self.calls += 1
        if float(_rdot(rhs, rhs)) == 0.0:
            return SolverResult(jnp.zeros_like(rhs), 0, 0.0)
        if x0 is None:
            x0 = jnp.zeros_like(rhs)
        x, k, res_true, res_rec = _cg_kernel(op, rhs, x0, tol, maxiter)
        k = int(k)
        self.total_iterations += k
        res_rec = float(res_rec)
        if not (np.isfinite(res_rec) and np.isfinite(float(res_true)) and res_rec <= tol):
            raise ConvergenceFailure(k, float(res_true), tol)
        return SolverResult(x, k, float(res_true))
