"""Hybrid Monte Carlo generation of lattice gauge fields in JAX."""

from importlib import import_module
import os
import platform

# Apple Metal JAX can fail early on some setups (e.g. PRNG key creation).
# Default to CPU unless the user has explicitly selected a JAX platform.
if platform.system() == "Darwin" and "JAX_PLATFORMS" not in os.environ and "JAX_PLATFORM_NAME" not in os.environ:
    os.environ["JAX_PLATFORMS"] = "cpu"

import jax

# Metropolis tests on lattice actions of O(10^4) need double precision.
jax.config.update("jax_enable_x64", True)

from .errors import (
    CheckpointLoadFailure,
    CheckpointWriteFailure,
    ConvergenceFailure,
    HMCError,
    InvalidParameter,
)
from .core import (
    ActionLevel,
    ConjugateGradient,
    HMCDriver,
    Integrator,
    Leapfrog,
    MinNorm2,
    MinNorm4PF4,
    ObservableRegistry,
    RNGModule,
)
from .models import GaugeTheory

__version__ = "0.1.0"


def __getattr__(name):
    if name == "LieGroups":
        return import_module(".LieGroups", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ActionLevel",
    "CheckpointLoadFailure",
    "CheckpointWriteFailure",
    "ConjugateGradient",
    "ConvergenceFailure",
    "GaugeTheory",
    "HMCDriver",
    "HMCError",
    "Integrator",
    "InvalidParameter",
    "Leapfrog",
    "LieGroups",
    "MinNorm2",
    "MinNorm4PF4",
    "ObservableRegistry",
    "RNGModule",
]
