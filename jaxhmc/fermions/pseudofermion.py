"""Two-flavour even-odd pseudofermion action term."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import jax
import jax.numpy as jnp
from jax.tree_util import Partial

from jaxhmc.core.solver import ConjugateGradient
from jaxhmc.fermions.staggered import NaiveStaggeredOperator, apply_mpc
from jaxhmc.models.gauge import GaugeTheory
from jaxhmc.models.smearing import StoutSmearing


Array = jax.Array


def _identity(U: Array) -> Array:
    return U


@dataclass
class TwoFlavourEvenOddPseudoFermionAction:
    """S_pf = phi^dag (Mpc^dag Mpc)^-1 phi on the even sublattice.

    With `smeared=True` the operator is built from stout-smeared links and
    the force is differentiated through the smearing.
    """

    theory: GaugeTheory
    dirac: NaiveStaggeredOperator
    action_solver: ConjugateGradient
    derivative_solver: ConjugateGradient
    smeared: bool = False
    smearing: Optional[StoutSmearing] = None
    name: str = "two_flavour_eo_pf"
    stochastic: bool = True
    eta: Optional[Array] = field(default=None, init=False, repr=False)
    phi: Optional[Array] = field(default=None, init=False, repr=False)
    _links: Optional[Callable] = field(default=None, init=False, repr=False)
    _force_fn: Optional[Callable] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.smeared and self.smearing is None:
            self.smearing = StoutSmearing()
        transform = self.smearing if self.smeared else _identity
        dirac = self.dirac
        mass = jnp.asarray(dirac.mass)
        even = dirac.even

        def links(U: Array) -> Array:
            return dirac.dress(transform(U))

        def linearized_action(U: Array, Z: Array, X: Array) -> Array:
            # dS = -2 Re <Z, dMpc X> with Z = Mpc^-1 phi, X = Mpc^-2 phi held fixed
            return -2.0 * jnp.real(jnp.vdot(Z, apply_mpc(links(U), mass, even, X)))

        self._mass = mass
        self._links = jax.jit(links)
        self._force_fn = self.theory.make_force(linearized_action)

    def _operator(self, q: Array) -> Partial:
        return Partial(apply_mpc, self._links(q), self._mass, self.dirac.even)

    def _require_phi(self) -> Array:
        if self.phi is None:
            raise RuntimeError(f"{self.name}: refresh() must be called before action() or force()")
        return self.phi

    def refresh(self, q: Array, rng) -> None:
        """Heatbath: eta ~ exp(-|eta|^2) on even sites from the parallel stream, phi = Mpc^dag eta."""
        eta = rng.parallel.complex_gaussian(self.theory.fermion_shape(), dtype=self.dirac.dtype)
        self.eta = self.dirac.project_even(eta)
        self.phi = self._operator(q)(self.eta)

    def action(self, q: Array) -> Array:
        phi = self._require_phi()
        Y = self.action_solver.solve(self._operator(q), phi).x
        return jnp.real(jnp.vdot(Y, Y))

    def force(self, q: Array) -> Array:
        phi = self._require_phi()
        op = self._operator(q)
        Z = self.derivative_solver.solve(op, phi).x
        X = self.derivative_solver.solve(op, Z).x
        return self._force_fn(q, Z, X)
