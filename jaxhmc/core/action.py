"""Action terms grouped into integration levels."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence, runtime_checkable

import jax

from jaxhmc.errors import InvalidParameter


Array = jax.Array


@runtime_checkable
class ActionTerm(Protocol):
    """One contribution S_i(U) to the Hamiltonian."""

    name: str
    stochastic: bool

    def refresh(self, q: Array, rng) -> None:
        """Redraw auxiliary fields (pseudofermions) from the heatbath."""

    def action(self, q: Array) -> Array:
        """Return the scalar action value."""

    def force(self, q: Array) -> Array:
        """Return the Lie-algebra force, shaped like the momentum."""


@dataclass
class ActionLevel:
    """Terms integrated on a common time step; `multiplier` sub-steps per coarser drift."""

    multiplier: int = 1
    actions: List[ActionTerm] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.multiplier, bool) or int(self.multiplier) != self.multiplier or int(self.multiplier) < 1:
            raise InvalidParameter(f"ActionLevel multiplier must be a positive integer, got {self.multiplier!r}")
        self.multiplier = int(self.multiplier)
        self.actions = list(self.actions)

    def push_back(self, term: ActionTerm) -> None:
        if not isinstance(term, ActionTerm):
            raise TypeError(f"{term!r} does not implement the ActionTerm interface")
        self.actions.append(term)

    append = push_back

    def refresh(self, q: Array, rng) -> None:
        for a in self.actions:
            if a.stochastic:
                a.refresh(q, rng)

    def action(self, q: Array) -> Array:
        total = None
        for a in self.actions:
            term = a.action(q)
            total = term if total is None else (total + term)
        return total

    def force(self, q: Array) -> Array:
        total = None
        for a in self.actions:
            term = a.force(q)
            total = term if total is None else (total + term)
        return total

    def action_breakdown(self, q: Array) -> Dict[str, Array]:
        return {a.name: a.action(q) for a in self.actions}

    def names(self) -> List[str]:
        return [a.name for a in self.actions]


def check_levels(levels: Sequence[ActionLevel]) -> None:
    """Levels run coarse to fine: non-empty, with non-decreasing multipliers."""
    if not levels:
        raise InvalidParameter("No action levels configured")
    for i, lv in enumerate(levels):
        if not lv.actions:
            raise InvalidParameter(f"Action level {i} has no action terms")
    for i in range(1, len(levels)):
        if levels[i].multiplier < levels[i - 1].multiplier:
            raise InvalidParameter(
                f"Level multipliers must be non-decreasing: level {i} has {levels[i].multiplier}"
                f" < level {i - 1} with {levels[i - 1].multiplier}"
            )


def total_action(levels: Sequence[ActionLevel], q: Array) -> Array:
    total = None
    for lv in levels:
        s = lv.action(q)
        total = s if total is None else (total + s)
    return total


def refresh_levels(levels: Sequence[ActionLevel], q: Array, rng) -> None:
    for lv in levels:
        lv.refresh(q, rng)
