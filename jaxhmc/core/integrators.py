"""Multi-time-scale molecular dynamics integrators.

Each scheme is a palindromic template of momentum kicks ("p", c) and link
drifts ("q", c), with coefficients in units of one step.  Action levels are
nested: a drift of a coarse level is subdivided into `multiplier` steps of the
next level, and only the finest level moves the links.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

import jax

from jaxhmc.core.action import ActionLevel, check_levels
from jaxhmc.errors import InvalidParameter


Array = jax.Array

# (kind, level, dt)
Op = Tuple[str, int, float]


def simple_evolve_p(dt: float, F: Array, P: Array) -> Array:
    return P + dt * F


@dataclass
class Integrator:
    levels: Sequence[ActionLevel]
    evolve_q: Callable[[float, Array, Array], Array]
    Nmd: int
    t: float
    evolve_p: Callable[[float, Array, Array], Array] = simple_evolve_p
    template: Tuple[Tuple[str, float], ...] = field(default=(), init=False, repr=False)

    def __post_init__(self) -> None:
        self.levels = list(self.levels)
        check_levels(self.levels)
        self.Nmd = int(self.Nmd)
        if self.Nmd < 1:
            raise InvalidParameter(f"Nmd must be >= 1, got {self.Nmd}")
        self.t = float(self.t)
        self.dt = self.t / (self.Nmd * self.levels[0].multiplier)
        self.template = tuple(self.scheme())
        self._raw = self._expand()
        self.schedule = self._merge(self._raw)

    def scheme(self) -> List[Tuple[str, float]]:
        raise NotImplementedError

    def _steps(self, level: int) -> int:
        if level == 0:
            return self.Nmd * self.levels[0].multiplier
        return self.levels[level].multiplier

    def _expand(self) -> List[Op]:
        """Unroll the level tree breadth-first into kicks and drifts."""
        finest = len(self.levels) - 1
        ops: List[Op] = [("span", 0, self.t)]
        for level in range(len(self.levels)):
            out: List[Op] = []
            for kind, lvl, d in ops:
                if kind != "span":
                    out.append((kind, lvl, d))
                    continue
                n = self._steps(level)
                h = d / n
                for _ in range(n):
                    for k, c in self.template:
                        if k == "p":
                            out.append(("p", level, c * h))
                        elif level == finest:
                            out.append(("q", level, c * h))
                        else:
                            out.append(("span", level + 1, c * h))
            ops = out
        return ops

    @staticmethod
    def _merge(ops: List[Op]) -> List[Op]:
        """Fuse consecutive kicks of each level between drifts; forces share the same links."""
        merged: List[Op] = []
        pending: dict = {}
        for kind, lvl, d in ops:
            if kind == "p":
                pending[lvl] = pending.get(lvl, 0.0) + d
                continue
            for l in sorted(pending):
                merged.append(("p", l, pending[l]))
            pending = {}
            merged.append((kind, lvl, d))
        for l in sorted(pending):
            merged.append(("p", l, pending[l]))
        return merged

    def steps_per_level(self) -> List[int]:
        """Number of MD steps each level takes per trajectory."""
        counts = [1] * len(self.levels)
        total = 1
        for level in range(len(self.levels)):
            total *= self._steps(level)
            counts[level] = total
            total *= sum(1 for k, _ in self.template if k == "q")
        return counts

    def force_evaluations(self) -> List[int]:
        counts = [0] * len(self.levels)
        for kind, lvl, _ in self.schedule:
            if kind == "p":
                counts[lvl] += 1
        return counts

    def integrate(self, p: Array, q: Array) -> Tuple[Array, Array]:
        for kind, lvl, d in self.schedule:
            if kind == "p":
                p = self.evolve_p(d, self.levels[lvl].force(q), p)
            else:
                q = self.evolve_q(d, p, q)
        return p, q


class Leapfrog(Integrator):
    def scheme(self):
        return [("p", 0.5), ("q", 1.0), ("p", 0.5)]


class MinNorm2(Integrator):
    lam = 0.1931833275037836

    def scheme(self):
        lam = self.lam
        return [("p", lam), ("q", 0.5), ("p", 1.0 - 2.0 * lam), ("q", 0.5), ("p", lam)]


class MinNorm4PF4(Integrator):
    rho = 0.1786178958448091
    theta = -0.06626458266981843
    lam = 0.7123418310626056

    def scheme(self):
        rho, the, lam = self.rho, self.theta, self.lam
        return [
            ("p", rho),
            ("q", lam),
            ("p", the),
            ("q", (1.0 - 2.0 * lam) / 2.0),
            ("p", 1.0 - 2.0 * (the + rho)),
            ("q", (1.0 - 2.0 * lam) / 2.0),
            ("p", the),
            ("q", lam),
            ("p", rho),
        ]


INTEGRATORS = {
    "leapfrog": Leapfrog,
    "minnorm2": MinNorm2,
    "minnorm4pf4": MinNorm4PF4,
}


def build_integrator(name: str, levels, evolve_q, Nmd: int, t: float) -> Integrator:
    try:
        cls = INTEGRATORS[name]
    except KeyError:
        raise ValueError(f"Unknown integrator: {name}") from None
    return cls(levels, evolve_q, Nmd, t)


leapfrog = Leapfrog
minnorm2 = MinNorm2
minnorm4pf4 = MinNorm4PF4
