"""Plaquette plus rectangle gauge actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import jax

from jaxhmc.models.gauge import GaugeTheory, plaquette_sum, rectangle_sum


Array = jax.Array

# RBC-family rectangle coefficients c1; c_plaq = beta (1 - 8 c1), c_rect = beta c1.
SYMANZIK_C1 = -1.0 / 12.0
IWASAKI_C1 = -0.331
DBW2_C1 = -1.4088


@dataclass
class PlaqPlusRectangleAction:
    """S = c_plaq sum_{x,mu<nu} (1 - Re tr P/Nc) + c_rect sum_{x,mu!=nu} (1 - Re tr R/Nc)."""

    theory: GaugeTheory
    c_plaq: float
    c_rect: float = 0.0
    name: str = "gauge"
    stochastic: bool = False
    _action_fn: Optional[Callable] = field(default=None, init=False, repr=False)
    _force_fn: Optional[Callable] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.c_plaq = float(self.c_plaq)
        self.c_rect = float(self.c_rect)
        th = self.theory
        nplaq = th.volume * th.Nd * (th.Nd - 1) // 2
        nrect = th.volume * th.Nd * (th.Nd - 1)
        c_plaq, c_rect, Nc = self.c_plaq, self.c_rect, float(th.Nc)
        use_rect = c_rect != 0.0

        def action_fn(U: Array) -> Array:
            S = c_plaq * (nplaq - plaquette_sum(U) / Nc)
            if use_rect:
                S = S + c_rect * (nrect - rectangle_sum(U) / Nc)
            return S

        self._action_fn = jax.jit(action_fn)
        self._force_fn = th.make_force(action_fn)

    def refresh(self, q: Array, rng) -> None:
        _ = q
        _ = rng

    def action(self, q: Array) -> Array:
        return self._action_fn(q)

    def force(self, q: Array) -> Array:
        return self._force_fn(q)


def WilsonGaugeAction(theory: GaugeTheory, beta: float, name: str = "wilson_gauge") -> PlaqPlusRectangleAction:
    return PlaqPlusRectangleAction(theory, c_plaq=float(beta), c_rect=0.0, name=name)


def RBCGaugeAction(theory: GaugeTheory, beta: float, c1: float, name: str = "rbc_gauge") -> PlaqPlusRectangleAction:
    return PlaqPlusRectangleAction(
        theory,
        c_plaq=float(beta) * (1.0 - 8.0 * float(c1)),
        c_rect=float(beta) * float(c1),
        name=name,
    )


def SymanzikGaugeAction(theory: GaugeTheory, beta: float) -> PlaqPlusRectangleAction:
    return RBCGaugeAction(theory, beta, SYMANZIK_C1, name="symanzik_gauge")


def IwasakiGaugeAction(theory: GaugeTheory, beta: float) -> PlaqPlusRectangleAction:
    return RBCGaugeAction(theory, beta, IWASAKI_C1, name="iwasaki_gauge")


def DBW2GaugeAction(theory: GaugeTheory, beta: float) -> PlaqPlusRectangleAction:
    return RBCGaugeAction(theory, beta, DBW2_C1, name="dbw2_gauge")


GAUGE_ACTIONS = {
    "wilson": WilsonGaugeAction,
    "symanzik": SymanzikGaugeAction,
    "iwasaki": IwasakiGaugeAction,
    "dbw2": DBW2GaugeAction,
}


def gauge_action(kind: str, theory: GaugeTheory, beta: float) -> PlaqPlusRectangleAction:
    try:
        ctor = GAUGE_ACTIONS[kind]
    except KeyError:
        raise ValueError(f"Unknown gauge action: {kind!r}") from None
    return ctor(theory, beta)
