"""Exception types raised by the HMC engine."""

from __future__ import annotations


class HMCError(Exception):
    """Base class for all jaxhmc failures."""


class InvalidParameter(HMCError, ValueError):
    """A run parameter is out of range or malformed."""


class ConvergenceFailure(HMCError, RuntimeError):
    """The linear solver hit its iteration cap before reaching the tolerance."""

    def __init__(self, iterations: int, residual: float, tol: float):
        self.iterations = int(iterations)
        self.residual = float(residual)
        self.tol = float(tol)
        super().__init__(
            f"CG did not converge: iterations={self.iterations} "
            f"relative residual={self.residual:.3e} tol={self.tol:.3e}"
        )


class CheckpointWriteFailure(HMCError, OSError):
    """A checkpoint record could not be written."""


class CheckpointLoadFailure(HMCError, ValueError):
    """A checkpoint record exists but is unreadable or inconsistent."""
