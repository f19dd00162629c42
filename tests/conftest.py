import jax.numpy as jnp
import numpy as np
import pytest

import jaxhmc  # noqa: F401  (enables float64)
from jaxhmc.core.action import ActionLevel
from jaxhmc.core.rng import RNGModule
from jaxhmc.core.solver import ConjugateGradient
from jaxhmc.fermions.pseudofermion import TwoFlavourEvenOddPseudoFermionAction
from jaxhmc.fermions.staggered import NaiveStaggeredOperator
from jaxhmc.models.gauge import GaugeTheory
from jaxhmc.models.gauge_actions import WilsonGaugeAction


def algebra_dot(a, b) -> float:
    """sum Re tr(a b); the directional derivative of S along P is algebra_dot(F, P)."""
    return float(jnp.sum(jnp.real(jnp.einsum("...ab,...ba->...", a, b))))


def random_gauge_transform(theory: GaugeTheory, stream):
    """Site field Omega(x) with shape (*L, Nc, Nc)."""
    return theory.hot_start(stream)[0]


def gauge_transform(q, omega):
    out = []
    for mu in range(q.shape[0]):
        omega_xpmu = jnp.roll(omega, -1, axis=mu)
        out.append(omega @ q[mu] @ jnp.conj(jnp.swapaxes(omega_xpmu, -1, -2)))
    return jnp.stack(out, axis=0)


def make_pf_term(theory, mass=0.2, tol=1e-12, smeared=False):
    dirac = NaiveStaggeredOperator(theory.lattice_shape, mass=mass, dtype=theory.dtype)
    solver = ConjugateGradient(tol=tol, maxiter=5000)
    return TwoFlavourEvenOddPseudoFermionAction(theory, dirac, solver, solver, smeared=smeared)


def split_wilson_levels(theory, beta, multipliers=(1, 2)):
    """Wilson action split evenly over levels so that every level carries a force."""
    share = float(beta) / len(multipliers)
    return [ActionLevel(m, [WilsonGaugeAction(theory, share, name=f"wilson_{i}")]) for i, m in enumerate(multipliers)]


@pytest.fixture
def rng():
    return RNGModule("1 2 3 4 5", "6 7 8 9 10")


@pytest.fixture
def su2_2d():
    return GaugeTheory((4, 4), Nc=2, exp_method="su2")


@pytest.fixture
def su3_2d():
    return GaugeTheory((4, 4), Nc=3)


@pytest.fixture
def np_rng():
    return np.random.default_rng(1234)
