"""Observables measured after every trajectory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class Observable(Protocol):
    name: str
    every: int

    def measure(self, q, theory) -> Mapping[str, float]:
        """Return a flat mapping of scalar values."""


@dataclass
class PlaquetteObservable:
    """Average plaquette Re tr P / Nc."""

    every: int = 1
    name: str = "plaquette"

    def measure(self, q, theory) -> Mapping[str, float]:
        return {"value": float(theory.average_plaquette(q))}


@dataclass
class RectangleObservable:
    every: int = 1
    name: str = "rectangle"

    def measure(self, q, theory) -> Mapping[str, float]:
        return {"value": float(theory.average_rectangle(q))}


@dataclass
class PolyakovLoopObservable:
    """Volume-averaged Polyakov loop along the time direction."""

    every: int = 1
    name: str = "polyakov"

    def measure(self, q, theory) -> Mapping[str, float]:
        L = complex(theory.polyakov_loop(q))
        return {"re": L.real, "im": L.imag, "abs": abs(L)}


OBSERVABLES = {
    "plaquette": PlaquetteObservable,
    "rectangle": RectangleObservable,
    "polyakov": PolyakovLoopObservable,
}


def build_observables(entries: List[Any]) -> List[Observable]:
    """Observables from mappings or ObservableParameters with type/name/every."""
    out: List[Observable] = []
    for idx, entry in enumerate(entries):
        if isinstance(entry, Mapping):
            otype, name, every = entry.get("type", ""), entry.get("name", ""), entry.get("every", 1)
        else:
            otype, name, every = entry.type, entry.name, entry.every
        otype = str(otype).strip().lower()
        name = str(name).strip()
        every = int(every)
        if every <= 0:
            raise ValueError(f"Observable[{idx}] has invalid every={every}; expected >=1")
        if otype not in OBSERVABLES:
            raise ValueError(f"Unsupported observable type: {otype!r}")
        cls = OBSERVABLES[otype]
        out.append(cls(every=every, name=(name or otype)))
    return out


@dataclass
class ObservableRegistry:
    observables: List[Observable] = field(default_factory=list)
    records: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, obs: Observable) -> None:
        if any(o.name == obs.name for o in self.observables):
            raise ValueError(f"Observable {obs.name!r} already registered")
        self.observables.append(obs)

    def names(self) -> List[str]:
        return [o.name for o in self.observables]

    def measure(self, trajectory: int, q, theory) -> List[Dict[str, Any]]:
        """Run every observable due at this trajectory and record the values."""
        new: List[Dict[str, Any]] = []
        for o in self.observables:
            every = max(1, int(getattr(o, "every", 1)))
            if int(trajectory) % every != 0:
                continue
            rec = {"trajectory": int(trajectory), "name": str(o.name), "values": dict(o.measure(q, theory))}
            new.append(rec)
        self.records.extend(new)
        return new

    def history(self, key: str) -> np.ndarray:
        """Time series for "name.value"-style keys."""
        name, _, field_name = key.partition(".")
        field_name = field_name or "value"
        return np.asarray(
            [r["values"][field_name] for r in self.records if r["name"] == name],
            dtype=np.float64,
        )
