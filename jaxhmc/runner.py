"""Assemble an HMC run from parameters and drive it from the command line."""

from __future__ import annotations

import argparse
import dataclasses
import time
from pathlib import Path
from typing import List, Optional

import jax

from jaxhmc.core.action import ActionLevel
from jaxhmc.core.measurements import ObservableRegistry, build_observables
from jaxhmc.core.rng import RNGModule
from jaxhmc.core.solver import ConjugateGradient
from jaxhmc.core.update import HMCDriver
from jaxhmc.fermions.pseudofermion import TwoFlavourEvenOddPseudoFermionAction
from jaxhmc.fermions.staggered import NaiveStaggeredOperator
from jaxhmc.io.nersc import NerscCheckpointer
from jaxhmc.models.gauge import GaugeTheory
from jaxhmc.models.gauge_actions import gauge_action
from jaxhmc.models.smearing import StoutSmearing
from jaxhmc.params import TEMPLATE_TOML, RunParameters, load_run_parameters


def build_driver(params: RunParameters, checkpoint: bool = True) -> HMCDriver:
    """Theory, action levels, solver, RNG, checkpointer and observables wired into a driver."""
    ph = params.physics
    theory = GaugeTheory(params.lattice_shape, Nc=params.Nc, exp_method=params.exp_method)
    solver = ConjugateGradient(params.solver.tol, params.solver.maxiter)

    def make_term(kind: str):
        if kind == "gauge":
            return gauge_action(ph.gauge_action, theory, ph.beta)
        dirac = NaiveStaggeredOperator(
            theory.lattice_shape,
            mass=ph.mass,
            c1=ph.c1,
            u0=ph.u0,
            boundary_phases=ph.boundary_phases,
            dtype=theory.dtype,
        )
        smearing = StoutSmearing(ph.smear_rho, ph.smear_steps) if ph.smeared else None
        # one solver instance serves both the action and the force solves
        return TwoFlavourEvenOddPseudoFermionAction(
            theory, dirac, solver, solver, smeared=ph.smeared, smearing=smearing
        )

    levels: List[ActionLevel] = []
    for lp in params.levels:
        level = ActionLevel(lp.multiplier)
        for kind in lp.actions:
            level.push_back(make_term(kind))
        levels.append(level)

    registry = ObservableRegistry()
    for obs in build_observables(list(params.observables)):
        registry.add(obs)

    return HMCDriver(
        theory=theory,
        levels=levels,
        integrator_params=params.integrator,
        params=params.hmc,
        rng=RNGModule.from_parameters(params.rng),
        checkpointer=NerscCheckpointer(params.checkpoint, theory) if checkpoint else None,
        observables=registry,
        verbose=params.verbose,
    )


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Lattice gauge-field generation with HMC")
    ap.add_argument("--config", type=str, default="", help="TOML control file")
    ap.add_argument("--write-template", type=str, default="", help="write template TOML and exit")
    ap.add_argument("--trajectories", type=int, default=None, help="override hmc.trajectories")
    ap.add_argument("--start-type", type=str, default=None, help="override hmc.start_type")
    ap.add_argument("--quiet", action="store_true", help="suppress per-trajectory output")
    args = ap.parse_args(argv)

    if args.write_template:
        out = Path(args.write_template)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(TEMPLATE_TOML, encoding="utf-8")
        print(f"Wrote template: {out}")
        return

    if not args.config:
        raise SystemExit("Provide --config <control.toml> or --write-template <path>")

    params = load_run_parameters(args.config)
    hmc = params.hmc
    if args.trajectories is not None:
        hmc = dataclasses.replace(hmc, trajectories=int(args.trajectories))
    if args.start_type is not None:
        hmc = dataclasses.replace(hmc, start_type=args.start_type.lower())
    params = dataclasses.replace(params, hmc=hmc, verbose=params.verbose and not args.quiet)

    if params.verbose:
        print("JAX backend:", jax.default_backend())
        print("JAX devices:", [str(d) for d in jax.devices()])
    driver = build_driver(params)
    t0 = time.perf_counter()
    driver.run()
    wall = time.perf_counter() - t0
    n = max(1, len(driver.records))
    plaq = driver.observables.history("plaquette.value")
    print(f"Done: {len(driver.records)} trajectories, acceptance {driver.calc_acceptance():.3f}, {wall / n:.2f} s/traj")
    if plaq.size:
        print(f"Last plaquette: {plaq[-1]:.12f}")


if __name__ == "__main__":
    main()
