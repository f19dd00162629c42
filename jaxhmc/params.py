"""Run parameters and the TOML control file."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, Tuple

from jaxhmc.errors import InvalidParameter


TEMPLATE_TOML = """# jaxhmc control file
control_version = 1

[run]
shape = [4, 4, 4, 4]   # x, y, z, t; every extent must be even
Nc = 3
exp_method = "expm"    # expm | su2
verbose = true

[physics]
gauge_action = "symanzik"   # wilson | symanzik | iwasaki | dbw2
beta = 7.0
mass = 0.1
c1 = 1.0                    # one-link staggered coefficient; 0.0 (the Grid run default) switches the hop off
u0 = 1.0                    # tadpole factor
boundary_phases = [1.0, 1.0, 1.0, 1.0]
smeared = false
smear_rho = 0.1
smear_steps = 1

[integrator]
name = "minnorm2"           # leapfrog | minnorm2 | minnorm4pf4
md_steps = 20
trajectory_length = 1.0

[hmc]
start_type = "hot"          # cold | tepid | hot | checkpoint
start_trajectory = 0
trajectories = 5
metropolis_test = true
no_metropolis_until = 0

[solver]
tol = 1e-8
maxiter = 2000

[checkpoint]
config_prefix = "ckpoint_lat"
rng_prefix = "ckpoint_rng"
save_interval = 5
format = "IEEE64BIG"        # IEEE64BIG | IEEE32BIG

[rng]
serial_seeds = "1 2 3 4 5"
parallel_seeds = "6 7 8 9 10"

# Coarsest level first; multipliers must not decrease.
[[levels]]
multiplier = 1
actions = ["fermion"]

[[levels]]
multiplier = 4
actions = ["gauge"]

[[observables]]
type = "plaquette"
name = "plaquette"
every = 1
"""


INTEGRATORS = ("leapfrog", "minnorm2", "minnorm4pf4")
START_TYPES = ("cold", "tepid", "hot", "checkpoint")
GAUGE_ACTIONS = ("wilson", "symanzik", "iwasaki", "dbw2")
ACTION_KINDS = ("gauge", "fermion")
FLOAT_FORMATS = ("IEEE64BIG", "IEEE32BIG")


def parse_seeds(seeds: str | Sequence[int]) -> Tuple[int, ...]:
    """Parse "1 2 3 4 5" (whitespace or comma separated) or an int sequence."""
    if isinstance(seeds, str):
        tokens = [t for t in re.split(r"[\s,]+", seeds.strip()) if t]
        out = []
        for t in tokens:
            if not re.fullmatch(r"\d+", t):
                raise InvalidParameter(f"Malformed seed token {t!r} in {seeds!r}")
            out.append(int(t))
    else:
        out = []
        for s in seeds:
            if isinstance(s, bool) or not isinstance(s, int) or s < 0:
                raise InvalidParameter(f"Seeds must be non-negative integers, got {s!r}")
            out.append(int(s))
    if not out:
        raise InvalidParameter("Seed list is empty")
    return tuple(out)


def _positive_int(name: str, v: Any) -> int:
    if isinstance(v, bool) or int(v) != v or int(v) < 1:
        raise InvalidParameter(f"{name} must be a positive integer, got {v!r}")
    return int(v)


def _positive_float(name: str, v: Any) -> float:
    if not float(v) > 0.0:
        raise InvalidParameter(f"{name} must be positive, got {v!r}")
    return float(v)


@dataclass(frozen=True)
class IntegratorParameters:
    md_steps: int = 20
    trajectory_length: float = 1.0
    name: str = "minnorm2"

    def __post_init__(self):
        _positive_int("md_steps", self.md_steps)
        _positive_float("trajectory_length", self.trajectory_length)
        if self.name not in INTEGRATORS:
            raise InvalidParameter(f"Unknown integrator {self.name!r}; expected one of {INTEGRATORS}")


@dataclass(frozen=True)
class HMCParameters:
    start_type: str = "hot"
    start_trajectory: int = 0
    trajectories: int = 10
    metropolis_test: bool = True
    no_metropolis_until: int = 0

    def __post_init__(self):
        if self.start_type not in START_TYPES:
            raise InvalidParameter(f"Unknown start_type {self.start_type!r}; expected one of {START_TYPES}")
        if int(self.start_trajectory) < 0:
            raise InvalidParameter("start_trajectory must be >= 0")
        if int(self.trajectories) < 0:
            raise InvalidParameter("trajectories must be >= 0")
        if int(self.no_metropolis_until) < 0:
            raise InvalidParameter("no_metropolis_until must be >= 0")


@dataclass(frozen=True)
class SolverParameters:
    tol: float = 1e-8
    maxiter: int = 2000

    def __post_init__(self):
        _positive_float("solver tol", self.tol)
        _positive_int("solver maxiter", self.maxiter)


@dataclass(frozen=True)
class CheckpointerParameters:
    config_prefix: str = "ckpoint_lat"
    rng_prefix: str = "ckpoint_rng"
    save_interval: int = 5
    format: str = "IEEE64BIG"

    def __post_init__(self):
        _positive_int("save_interval", self.save_interval)
        if self.format not in FLOAT_FORMATS:
            raise InvalidParameter(f"Unknown checkpoint format {self.format!r}; expected one of {FLOAT_FORMATS}")
        if not self.config_prefix or not self.rng_prefix:
            raise InvalidParameter("checkpoint prefixes must be non-empty")
        if self.config_prefix == self.rng_prefix:
            raise InvalidParameter("config_prefix and rng_prefix must differ")


@dataclass(frozen=True)
class RNGModuleParameters:
    serial_seeds: str | Tuple[int, ...] = "1 2 3 4 5"
    parallel_seeds: str | Tuple[int, ...] = "6 7 8 9 10"

    def __post_init__(self):
        parse_seeds(self.serial_seeds)
        parse_seeds(self.parallel_seeds)


@dataclass(frozen=True)
class PhysicsParameters:
    gauge_action: str = "symanzik"
    beta: float = 7.0
    mass: float = 0.1
    c1: float = 1.0
    u0: float = 1.0
    boundary_phases: Tuple[float, ...] | None = None
    smeared: bool = False
    smear_rho: float = 0.1
    smear_steps: int = 1

    def __post_init__(self):
        if self.gauge_action not in GAUGE_ACTIONS:
            raise InvalidParameter(f"Unknown gauge_action {self.gauge_action!r}; expected one of {GAUGE_ACTIONS}")
        _positive_float("beta", self.beta)
        _positive_float("mass", self.mass)
        _positive_float("u0", self.u0)
        if self.smeared:
            _positive_int("smear_steps", self.smear_steps)


@dataclass(frozen=True)
class LevelParameters:
    multiplier: int = 1
    actions: Tuple[str, ...] = ()

    def __post_init__(self):
        _positive_int("level multiplier", self.multiplier)
        if not self.actions:
            raise InvalidParameter("an action level needs at least one action")
        for a in self.actions:
            if a not in ACTION_KINDS:
                raise InvalidParameter(f"Unknown action {a!r}; expected one of {ACTION_KINDS}")


@dataclass(frozen=True)
class ObservableParameters:
    type: str = "plaquette"
    name: str = ""
    every: int = 1

    def __post_init__(self):
        _positive_int("observable every", self.every)


def _default_levels() -> Tuple[LevelParameters, ...]:
    return (LevelParameters(1, ("fermion",)), LevelParameters(4, ("gauge",)))


@dataclass(frozen=True)
class RunParameters:
    lattice_shape: Tuple[int, ...] = (4, 4, 4, 4)
    Nc: int = 3
    exp_method: str = "expm"
    verbose: bool = True
    physics: PhysicsParameters = field(default_factory=PhysicsParameters)
    integrator: IntegratorParameters = field(default_factory=IntegratorParameters)
    hmc: HMCParameters = field(default_factory=HMCParameters)
    solver: SolverParameters = field(default_factory=SolverParameters)
    checkpoint: CheckpointerParameters = field(default_factory=CheckpointerParameters)
    rng: RNGModuleParameters = field(default_factory=RNGModuleParameters)
    levels: Tuple[LevelParameters, ...] = field(default_factory=_default_levels)
    observables: Tuple[ObservableParameters, ...] = (ObservableParameters("plaquette", "plaquette", 1),)

    def __post_init__(self):
        if not self.lattice_shape:
            raise InvalidParameter("lattice shape must be non-empty")
        for L in self.lattice_shape:
            _positive_int("lattice extent", L)
        if int(self.Nc) < 2:
            raise InvalidParameter(f"Nc must be >= 2, got {self.Nc}")
        if self.exp_method not in ("expm", "su2"):
            raise InvalidParameter("exp_method must be one of: expm, su2")
        if self.exp_method == "su2" and int(self.Nc) != 2:
            raise InvalidParameter("exp_method='su2' requires Nc=2")
        if not self.levels:
            raise InvalidParameter("at least one action level is required")
        if any(a.multiplier < b.multiplier for a, b in zip(self.levels[1:], self.levels[:-1])):
            raise InvalidParameter("level multipliers must be non-decreasing from coarse to fine")
        uses_fermions = any("fermion" in lv.actions for lv in self.levels)
        if uses_fermions and any(int(L) % 2 for L in self.lattice_shape):
            raise InvalidParameter("even-odd preconditioning requires even lattice extents")
        bp = self.physics.boundary_phases
        if bp is not None and len(bp) != len(self.lattice_shape):
            raise InvalidParameter("boundary_phases must have one entry per lattice direction")


def _cfg_get(cfg: Mapping[str, Any], path: str, default: Any) -> Any:
    cur: Any = cfg
    for p in path.split("."):
        if not isinstance(cur, Mapping) or p not in cur:
            return default
        cur = cur[p]
    return cur


def run_parameters_from_dict(cfg: Mapping[str, Any]) -> RunParameters:
    """Build validated RunParameters from a parsed control-file mapping."""
    version = int(_cfg_get(cfg, "control_version", 1))
    if version != 1:
        raise InvalidParameter(f"Unsupported control_version {version}")
    bp = _cfg_get(cfg, "physics.boundary_phases", None)
    physics = PhysicsParameters(
        gauge_action=str(_cfg_get(cfg, "physics.gauge_action", "symanzik")).lower(),
        beta=float(_cfg_get(cfg, "physics.beta", 7.0)),
        mass=float(_cfg_get(cfg, "physics.mass", 0.1)),
        c1=float(_cfg_get(cfg, "physics.c1", 1.0)),
        u0=float(_cfg_get(cfg, "physics.u0", 1.0)),
        boundary_phases=None if bp is None else tuple(float(v) for v in bp),
        smeared=bool(_cfg_get(cfg, "physics.smeared", False)),
        smear_rho=float(_cfg_get(cfg, "physics.smear_rho", 0.1)),
        smear_steps=_cfg_get(cfg, "physics.smear_steps", 1),
    )
    integ = IntegratorParameters(
        md_steps=_cfg_get(cfg, "integrator.md_steps", 20),
        trajectory_length=_cfg_get(cfg, "integrator.trajectory_length", 1.0),
        name=str(_cfg_get(cfg, "integrator.name", "minnorm2")).lower(),
    )
    hmc = HMCParameters(
        start_type=str(_cfg_get(cfg, "hmc.start_type", "hot")).lower(),
        start_trajectory=int(_cfg_get(cfg, "hmc.start_trajectory", 0)),
        trajectories=int(_cfg_get(cfg, "hmc.trajectories", 10)),
        metropolis_test=bool(_cfg_get(cfg, "hmc.metropolis_test", True)),
        no_metropolis_until=int(_cfg_get(cfg, "hmc.no_metropolis_until", 0)),
    )
    solver = SolverParameters(
        tol=_cfg_get(cfg, "solver.tol", 1e-8),
        maxiter=_cfg_get(cfg, "solver.maxiter", 2000),
    )
    ckpt = CheckpointerParameters(
        config_prefix=str(_cfg_get(cfg, "checkpoint.config_prefix", "ckpoint_lat")),
        rng_prefix=str(_cfg_get(cfg, "checkpoint.rng_prefix", "ckpoint_rng")),
        save_interval=_cfg_get(cfg, "checkpoint.save_interval", 5),
        format=str(_cfg_get(cfg, "checkpoint.format", "IEEE64BIG")).upper(),
    )
    rng = RNGModuleParameters(
        serial_seeds=_seed_value(_cfg_get(cfg, "rng.serial_seeds", "1 2 3 4 5")),
        parallel_seeds=_seed_value(_cfg_get(cfg, "rng.parallel_seeds", "6 7 8 9 10")),
    )
    raw_levels = _cfg_get(cfg, "levels", None)
    if raw_levels is None:
        levels = _default_levels()
    else:
        levels = tuple(
            LevelParameters(
                multiplier=lv.get("multiplier", 1),
                actions=tuple(str(a).lower() for a in lv.get("actions", ())),
            )
            for lv in raw_levels
        )
    raw_obs = _cfg_get(cfg, "observables", None)
    if raw_obs is None:
        observables = (ObservableParameters("plaquette", "plaquette", 1),)
    else:
        observables = tuple(
            ObservableParameters(
                type=str(o.get("type", "")).strip().lower(),
                name=str(o.get("name", "")).strip(),
                every=o.get("every", 1),
            )
            for o in raw_obs
        )
    shape = _cfg_get(cfg, "run.shape", [4, 4, 4, 4])
    return RunParameters(
        lattice_shape=_parse_shape(shape),
        Nc=int(_cfg_get(cfg, "run.Nc", 3)),
        exp_method=str(_cfg_get(cfg, "run.exp_method", "expm")).lower(),
        verbose=bool(_cfg_get(cfg, "run.verbose", True)),
        physics=physics,
        integrator=integ,
        hmc=hmc,
        solver=solver,
        checkpoint=ckpt,
        rng=rng,
        levels=levels,
        observables=observables,
    )


def _seed_value(v: Any) -> str | Tuple[int, ...]:
    return v if isinstance(v, str) else tuple(v)


def _parse_shape(v: Any) -> Tuple[int, ...]:
    if isinstance(v, str):
        vals = [int(x.strip()) for x in v.split(",") if x.strip()]
    else:
        vals = [int(x) for x in list(v)]
    if not vals:
        raise InvalidParameter("shape must be non-empty")
    return tuple(vals)


def load_toml(path: str | Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_run_parameters(path: str | Path) -> RunParameters:
    return run_parameters_from_dict(load_toml(path))
