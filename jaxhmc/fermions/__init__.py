"""Fermion operators and pseudofermion action terms."""

from .pseudofermion import TwoFlavourEvenOddPseudoFermionAction
from .staggered import NaiveStaggeredOperator, dslash, even_mask, staggered_phases

__all__ = [
    "NaiveStaggeredOperator",
    "TwoFlavourEvenOddPseudoFermionAction",
    "dslash",
    "even_mask",
    "staggered_phases",
]
