"""Generic HMC components shared across theories."""

from .action import ActionLevel, ActionTerm, check_levels
from .integrators import (
    Integrator,
    Leapfrog,
    MinNorm2,
    MinNorm4PF4,
    build_integrator,
    leapfrog,
    minnorm2,
    minnorm4pf4,
    simple_evolve_p,
)
from .measurements import (
    Observable,
    ObservableRegistry,
    PlaquetteObservable,
    PolyakovLoopObservable,
    RectangleObservable,
    build_observables,
)
from .rng import RandomStream, RNGModule
from .solver import ConjugateGradient, SolverResult
from .update import HMCDriver, HMCState, TrajectoryRecord

__all__ = [
    "ActionLevel",
    "ActionTerm",
    "check_levels",
    "Integrator",
    "Leapfrog",
    "MinNorm2",
    "MinNorm4PF4",
    "build_integrator",
    "leapfrog",
    "minnorm2",
    "minnorm4pf4",
    "simple_evolve_p",
    "Observable",
    "ObservableRegistry",
    "PlaquetteObservable",
    "PolyakovLoopObservable",
    "RectangleObservable",
    "build_observables",
    "RandomStream",
    "RNGModule",
    "ConjugateGradient",
    "SolverResult",
    "HMCDriver",
    "HMCState",
    "TrajectoryRecord",
]
