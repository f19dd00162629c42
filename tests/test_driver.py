import dataclasses

import numpy as np
import pytest

from conftest import make_pf_term, split_wilson_levels
from jaxhmc.core.measurements import ObservableRegistry, PlaquetteObservable, PolyakovLoopObservable
from jaxhmc.core.rng import RNGModule
from jaxhmc.core.update import HMCDriver, HMCState
from jaxhmc.io.nersc import NerscCheckpointer
from jaxhmc.models.gauge import GaugeTheory
from jaxhmc.params import CheckpointerParameters, HMCParameters, IntegratorParameters


def _driver(tmp_path=None, fermions=False, nmd=4, start="tepid", interval=2, no_metropolis_until=0, seeds=None):
    th = GaugeTheory((4, 4), Nc=2, exp_method="su2")
    levels = split_wilson_levels(th, 2.0, multipliers=(1, 2))
    if fermions:
        levels[0].push_back(make_pf_term(th, mass=0.4, tol=1e-10))
    ckpt = None
    if tmp_path is not None:
        ckpt = NerscCheckpointer(
            CheckpointerParameters(
                config_prefix=str(tmp_path / "ckpoint_lat"),
                rng_prefix=str(tmp_path / "ckpoint_rng"),
                save_interval=interval,
            ),
            th,
        )
    registry = ObservableRegistry()
    registry.add(PlaquetteObservable())
    registry.add(PolyakovLoopObservable())
    serial, parallel = seeds or ("1 2 3 4 5", "6 7 8 9 10")
    return HMCDriver(
        theory=th,
        levels=levels,
        integrator_params=IntegratorParameters(md_steps=nmd, trajectory_length=1.0, name="leapfrog"),
        params=HMCParameters(start_type=start, no_metropolis_until=no_metropolis_until),
        rng=RNGModule(serial, parallel),
        checkpointer=ckpt,
        observables=registry,
        verbose=False,
    )


def test_cold_start_and_state_machine():
    d = _driver(start="cold")
    q = d.initialize()
    assert d.state is HMCState.REFRESH
    assert d.theory.average_plaquette(q) == pytest.approx(1.0)
    d.run(2)
    assert d.state is HMCState.DONE
    assert d.trajectory == 2
    assert [r.trajectory for r in d.records] == [0, 1]


def test_metropolis_uses_one_serial_draw_per_trajectory():
    d = _driver()
    d.run(3)
    assert d.rng.serial.draws == 3
    assert all(r.metropolis for r in d.records)


def test_no_metropolis_warmup_accepts_without_drawing():
    d = _driver(no_metropolis_until=2)
    d.run(3)
    assert [r.accepted for r in d.records[:2]] == [True, True]
    assert [r.metropolis for r in d.records] == [False, False, True]
    assert d.rng.serial.draws == 1


def test_accept_decision_follows_acceptance_probability():
    d = _driver()
    d.run(4)
    for r in d.records:
        assert r.acc_prob == pytest.approx(min(1.0, float(np.exp(-r.dH))))
        if r.dH <= 0.0:
            assert r.accepted


def test_detailed_balance_acceptance_rate():
    d = _driver(nmd=3)
    n = 60
    d.run(n)
    acc = d.calc_acceptance()
    expected = float(np.mean([r.acc_prob for r in d.records]))
    assert abs(acc - expected) < 4.0 * np.sqrt(0.25 / n) + 0.05


def test_identical_seeds_reproduce_run():
    a, b = _driver(fermions=True), _driver(fermions=True)
    a.run(3)
    b.run(3)
    assert [r.accepted for r in a.records] == [r.accepted for r in b.records]
    assert [r.dH for r in a.records] == [r.dH for r in b.records]
    np.testing.assert_array_equal(a.observables.history("plaquette.value"), b.observables.history("plaquette.value"))
    np.testing.assert_array_equal(np.asarray(a.q), np.asarray(b.q))


def test_different_seeds_change_run():
    a = _driver()
    b = _driver(seeds=("1 2 3 4 5", "6 7 8 9 11"))
    a.run(2)
    b.run(2)
    assert [r.dH for r in a.records] != [r.dH for r in b.records]


def test_checkpoint_resume_is_bit_identical(tmp_path):
    full = _driver(tmp_path, fermions=True, interval=2)
    full.run(3)
    assert full.checkpointer.available() == [2]

    resumed = _driver(tmp_path, fermions=True, start="checkpoint")
    resumed.initialize()
    assert resumed.trajectory == 2
    resumed.run(1)
    r_full, r_res = full.records[2], resumed.records[0]
    assert r_res.trajectory == 2
    assert r_res.dH == r_full.dH
    assert r_res.accepted == r_full.accepted
    np.testing.assert_array_equal(np.asarray(resumed.q), np.asarray(full.q))


def test_checkpoint_start_without_record_is_cold(tmp_path):
    d = _driver(tmp_path / "empty", start="checkpoint")
    q = d.initialize()
    assert d.trajectory == 0
    assert d.theory.average_plaquette(q) == pytest.approx(1.0)


def test_measurements_recorded_every_trajectory():
    d = _driver()
    d.run(3)
    assert d.observables.history("plaquette.value").shape == (3,)
    assert d.observables.history("polyakov.abs").shape == (3,)
    assert [r["trajectory"] for r in d.observables.records if r["name"] == "plaquette"] == [1, 2, 3]
    np.testing.assert_allclose(d.observables.history("plaquette"), [r.plaquette for r in d.records])


def test_metropolis_disabled_accepts_everything():
    d = _driver(nmd=1)
    d.params = dataclasses.replace(d.params, metropolis_test=False)
    d.run(3)
    assert d.calc_acceptance() == 1.0
    assert d.rng.serial.draws == 0
