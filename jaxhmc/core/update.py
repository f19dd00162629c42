"""HMC trajectory driver: refresh, integrate, Metropolis, checkpoint, measure."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from jaxhmc.core.action import ActionLevel, check_levels, refresh_levels, total_action
from jaxhmc.core.integrators import build_integrator
from jaxhmc.core.measurements import ObservableRegistry
from jaxhmc.core.rng import RNGModule
from jaxhmc.params import HMCParameters, IntegratorParameters


Array = jax.Array


class HMCState(enum.Enum):
    INIT = "init"
    REFRESH = "refresh"
    INTEGRATE = "integrate"
    DECIDE = "decide"
    CHECKPOINT = "checkpoint"
    MEASURE = "measure"
    DONE = "done"


@dataclass
class TrajectoryRecord:
    trajectory: int
    dH: float
    accepted: bool
    acc_prob: float
    metropolis: bool
    plaquette: float
    seconds: float


@dataclass
class HMCDriver:
    theory: Any
    levels: Sequence[ActionLevel]
    integrator_params: IntegratorParameters = field(default_factory=IntegratorParameters)
    params: HMCParameters = field(default_factory=HMCParameters)
    rng: RNGModule = field(default_factory=RNGModule)
    checkpointer: Optional[Any] = None
    observables: ObservableRegistry = field(default_factory=ObservableRegistry)
    verbose: bool = True
    tepid_scale: float = 0.1
    AcceptReject: List[float] = field(default_factory=list)
    records: List[TrajectoryRecord] = field(default_factory=list)
    state: HMCState = field(default=HMCState.INIT, init=False)
    trajectory: int = field(default=0, init=False)
    q: Optional[Array] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.levels = list(self.levels)
        check_levels(self.levels)
        ip = self.integrator_params
        self.integrator = build_integrator(
            ip.name, self.levels, self.theory.evolve_q, ip.md_steps, ip.trajectory_length
        )

    def calc_acceptance(self) -> float:
        return float(np.mean(self.AcceptReject)) if self.AcceptReject else 0.0

    def reset_acceptance(self) -> None:
        self.AcceptReject = []

    def hamiltonian(self, p: Array, q: Array) -> Array:
        return self.theory.kinetic(p) + total_action(self.levels, q)

    def initialize(self, q: Optional[Array] = None) -> Array:
        """Set the starting field and trajectory index from `q` or the configured start type."""
        start = self.params.start_type
        traj = int(self.params.start_trajectory)
        if q is not None:
            self.q = jnp.asarray(q)
        elif start == "checkpoint":
            rec = None if self.checkpointer is None else self.checkpointer.load()
            if rec is None:
                if self.verbose:
                    print("No checkpoint found; cold start at trajectory 0")
                self.q = self.theory.cold_start()
                traj = 0
            else:
                traj, self.q, rng_state = rec
                self.rng.set_state(rng_state)
                if self.verbose:
                    print(f"Restored checkpoint at trajectory {traj}")
        elif start == "cold":
            self.q = self.theory.cold_start()
        elif start == "tepid":
            self.q = self.theory.tepid_start(self.rng.parallel, scale=self.tepid_scale)
        elif start == "hot":
            self.q = self.theory.hot_start(self.rng.parallel)
        else:
            raise ValueError(f"Unknown start type: {start}")
        self.trajectory = traj
        self.state = HMCState.REFRESH
        return self.q

    def trajectory_step(self, q: Array, traj: int) -> tuple:
        """One HMC trajectory from `q`; returns (q_next, TrajectoryRecord)."""
        ts = time.perf_counter()
        self.state = HMCState.REFRESH
        p0 = self.theory.refresh_p(self.rng.parallel)
        refresh_levels(self.levels, q, self.rng)
        H0 = self.hamiltonian(p0, q)

        self.state = HMCState.INTEGRATE
        p1, q1 = self.integrator.integrate(p0, q)
        H1 = self.hamiltonian(p1, q1)
        dH = float(H1 - H0)

        self.state = HMCState.DECIDE
        acc_prob = 1.0 if dH <= 0.0 else float(np.exp(-dH))
        metropolis = bool(self.params.metropolis_test) and traj >= int(self.params.no_metropolis_until)
        if metropolis:
            R = float(self.rng.serial.uniform())
            accepted = R <= acc_prob
        else:
            accepted = True
        q_next = q1 if accepted else q
        self.AcceptReject.append(1.0 if accepted else 0.0)
        rec = TrajectoryRecord(
            trajectory=int(traj),
            dH=dH,
            accepted=bool(accepted),
            acc_prob=acc_prob,
            metropolis=metropolis,
            plaquette=float(self.theory.average_plaquette(q_next)),
            seconds=time.perf_counter() - ts,
        )
        self.records.append(rec)
        if self.verbose:
            print(
                " HMC:",
                traj,
                " dH=",
                f"{dH:.6e}",
                " A/R=",
                bool(accepted),
                " Pacc=",
                f"{acc_prob:.4f}",
                "" if metropolis else " (no Metropolis)",
                f" plaq={rec.plaquette:.12f}",
                f" time={rec.seconds:.2f}s",
            )
        return q_next, rec

    def _checkpoint(self, completed: int) -> None:
        self.state = HMCState.CHECKPOINT
        if self.checkpointer is None or not self.checkpointer.due(completed):
            return
        cfg_path, rng_path = self.checkpointer.save(completed, self.q, self.rng.get_state())
        if self.verbose:
            print(f"Checkpoint {completed}: {cfg_path} {rng_path}")

    def _measure(self, completed: int) -> List[Dict[str, Any]]:
        self.state = HMCState.MEASURE
        recs = self.observables.measure(completed, self.q, self.theory)
        if self.verbose:
            for r in recs:
                vals = " ".join(f"{k}={v:.12g}" for k, v in r["values"].items())
                print(f"  [{r['name']}] traj={completed} {vals}")
        return recs

    def run(self, trajectories: Optional[int] = None, q: Optional[Array] = None) -> Array:
        """Run `trajectories` (default from parameters) and return the final field."""
        if self.q is None or q is not None:
            self.initialize(q)
        n = int(self.params.trajectories if trajectories is None else trajectories)
        start = self.trajectory
        if self.verbose:
            names = [name for lv in self.levels for name in lv.names()]
            print("HMC run:")
            print(f"  lattice: {self.theory.lattice_shape} Nc={self.theory.Nc}")
            print(f"  trajectories: {start} -> {start + n}")
            print(
                f"  integrator: {self.integrator_params.name}"
                f" (tau={self.integrator_params.trajectory_length}, nmd={self.integrator_params.md_steps})"
            )
            print(f"  levels: {[lv.multiplier for lv in self.levels]} steps/level={self.integrator.steps_per_level()}")
            print(f"  actions: {', '.join(names)}")
            print(f"  observables: {self.observables.names()}")
        for traj in range(start, start + n):
            self.q, _ = self.trajectory_step(self.q, traj)
            completed = traj + 1
            self.trajectory = completed
            self._checkpoint(completed)
            self._measure(completed)
        self.state = HMCState.DONE
        if self.verbose and n > 0:
            print(f"Acceptance: {self.calc_acceptance():.3f} over {len(self.AcceptReject)} trajectories")
        return self.q

    calc_Acceptance = calc_acceptance
    reset_Acceptance = reset_acceptance
