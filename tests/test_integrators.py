from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
import pytest

from conftest import make_pf_term, split_wilson_levels
from jaxhmc.core.action import ActionLevel, check_levels
from jaxhmc.core.integrators import Leapfrog, MinNorm2, MinNorm4PF4, build_integrator
from jaxhmc.errors import InvalidParameter
from jaxhmc.models.gauge import GaugeTheory


@dataclass
class CountingTerm:
    """Harmonic term S = k q^2 / 2 on a real scalar, counting force calls."""

    k: float = 1.0
    name: str = "spring"
    stochastic: bool = False
    calls: int = 0

    def refresh(self, q, rng):
        pass

    def action(self, q):
        return 0.5 * self.k * jnp.sum(q * q)

    def force(self, q):
        self.calls += 1
        return -self.k * q


def _drift(dt, p, q):
    return q + dt * p


def _spring_levels(multipliers=(1, 4)):
    return [ActionLevel(m, [CountingTerm(k=1.0 + i, name=f"spring_{i}")]) for i, m in enumerate(multipliers)]


def test_leapfrog_counts_match_reference_layout():
    levels = _spring_levels((1, 4))
    integ = Leapfrog(levels, _drift, 20, 1.0)
    assert integ.steps_per_level() == [20, 80]
    assert integ.force_evaluations() == [21, 81]
    integ.integrate(jnp.ones(3), jnp.zeros(3))
    assert [lv.actions[0].calls for lv in levels] == [21, 81]
    drifts = [d for k, _, d in integ.schedule if k == "q"]
    assert len(drifts) == 80
    assert sum(drifts) == pytest.approx(1.0, abs=1e-13)


def test_minnorm2_nests_two_windows_per_step():
    levels = _spring_levels((1, 4))
    integ = MinNorm2(levels, _drift, 20, 1.0)
    assert integ.steps_per_level() == [20, 160]
    assert integ.force_evaluations() == [41, 321]
    assert integ.dt == pytest.approx(0.05)


def test_base_multiplier_scales_outer_steps():
    integ = Leapfrog(_spring_levels((2, 2)), _drift, 5, 1.0)
    assert integ.steps_per_level() == [10, 20]
    assert integ.dt == pytest.approx(0.1)


def test_kicks_per_level_sum_to_trajectory_length():
    integ = MinNorm4PF4(_spring_levels((1, 2, 3)), _drift, 3, 0.7)
    for lvl in range(3):
        total = sum(d for k, l, d in integ.schedule if k == "p" and l == lvl)
        assert total == pytest.approx(0.7, abs=1e-12)
    total_q = sum(d for k, _, d in integ.schedule if k == "q")
    assert total_q == pytest.approx(0.7, abs=1e-12)


def test_schedule_is_palindromic():
    integ = MinNorm2(_spring_levels((1, 3)), _drift, 4, 1.0)
    s = integ.schedule
    for a, b in zip(s, reversed(s)):
        assert a[0] == b[0] and a[1] == b[1]
        assert a[2] == pytest.approx(b[2], abs=1e-14)


def test_level_validation():
    with pytest.raises(InvalidParameter):
        ActionLevel(0)
    with pytest.raises(InvalidParameter):
        check_levels([])
    with pytest.raises(InvalidParameter):
        check_levels([ActionLevel(1)])
    with pytest.raises(InvalidParameter):
        Leapfrog(_spring_levels((4, 1)), _drift, 10, 1.0)
    with pytest.raises(InvalidParameter):
        MinNorm2(_spring_levels(), _drift, 0, 1.0)
    with pytest.raises(TypeError):
        ActionLevel(1).push_back(object())
    with pytest.raises(ValueError):
        build_integrator("verlet", _spring_levels(), _drift, 10, 1.0)


def _oscillator_dH(cls, nmd):
    levels = _spring_levels((1, 2))
    integ = cls(levels, _drift, nmd, 1.0)
    p0, q0 = jnp.asarray([0.7, -1.1]), jnp.asarray([0.3, 0.5])

    def H(p, q):
        return 0.5 * jnp.sum(p * p) + sum(lv.action(q) for lv in levels)

    p1, q1 = integ.integrate(p0, q0)
    return abs(float(H(p1, q1) - H(p0, q0)))


@pytest.mark.parametrize("cls,order", [(Leapfrog, 2), (MinNorm2, 2), (MinNorm4PF4, 4)])
def test_oscillator_energy_error_order(cls, order):
    ratio = _oscillator_dH(cls, 16) / _oscillator_dH(cls, 32)
    assert ratio == pytest.approx(2**order, rel=0.35)


def _gauge_setup(rng, fermions=False):
    th = GaugeTheory((4, 4), Nc=2, exp_method="su2")
    levels = split_wilson_levels(th, 2.0, multipliers=(1, 2))
    if fermions:
        levels[0].push_back(make_pf_term(th, mass=0.3, tol=1e-12))
    q = th.tepid_start(rng.parallel, scale=0.4)
    for lv in levels:
        lv.refresh(q, rng)
    return th, levels, q


def _H(th, levels, p, q):
    return float(th.kinetic(p) + sum(lv.action(q) for lv in levels))


@pytest.mark.parametrize("cls", [Leapfrog, MinNorm2, MinNorm4PF4])
def test_gauge_reversibility(cls, rng):
    th, levels, q0 = _gauge_setup(rng)
    integ = cls(levels, th.evolve_q, 6, 1.0)
    p0 = th.refresh_p(rng.parallel)
    p1, q1 = integ.integrate(p0, q0)
    p2, q2 = integ.integrate(-p1, q1)
    assert float(jnp.max(jnp.abs(q2 - q0))) < 1e-10
    assert float(jnp.max(jnp.abs(p2 + p0))) < 1e-10


def test_reversibility_with_pseudofermions(rng):
    th, levels, q0 = _gauge_setup(rng, fermions=True)
    integ = MinNorm2(levels, th.evolve_q, 4, 0.5)
    p0 = th.refresh_p(rng.parallel)
    p1, q1 = integ.integrate(p0, q0)
    p2, q2 = integ.integrate(-p1, q1)
    assert float(jnp.max(jnp.abs(q2 - q0))) < 1e-7
    assert float(jnp.max(jnp.abs(p2 + p0))) < 1e-7


def _mean_abs_dH(cls, nmd, th, levels, q0, momenta):
    integ = cls(levels, th.evolve_q, nmd, 1.0)
    out = []
    for p0 in momenta:
        p1, q1 = integ.integrate(p0, q0)
        out.append(abs(_H(th, levels, p1, q1) - _H(th, levels, p0, q0)))
    return float(np.mean(out))


def test_gauge_energy_drift_scaling(rng):
    th, levels, q0 = _gauge_setup(rng)
    momenta = [th.refresh_p(rng.parallel) for _ in range(3)]
    lf = _mean_abs_dH(Leapfrog, 10, th, levels, q0, momenta) / _mean_abs_dH(Leapfrog, 20, th, levels, q0, momenta)
    assert 2.5 < lf < 6.0
    mn4 = _mean_abs_dH(MinNorm4PF4, 10, th, levels, q0, momenta) / _mean_abs_dH(
        MinNorm4PF4, 20, th, levels, q0, momenta
    )
    assert mn4 > 8.0
