import dataclasses

import numpy as np
import pytest

from jaxhmc.params import RunParameters, run_parameters_from_dict
from jaxhmc.runner import build_driver


pytestmark = pytest.mark.slow


def _params(tmp_path) -> RunParameters:
    params = run_parameters_from_dict({"hmc": {"start_type": "hot", "trajectories": 5}})
    ckpt = dataclasses.replace(
        params.checkpoint,
        config_prefix=str(tmp_path / "ckpoint_lat"),
        rng_prefix=str(tmp_path / "ckpoint_rng"),
    )
    return dataclasses.replace(params, checkpoint=ckpt, verbose=False)


def test_su3_dynamical_run_is_reproducible(tmp_path):
    a = build_driver(_params(tmp_path / "a"))
    b = build_driver(_params(tmp_path / "b"))
    a.run()
    b.run()
    assert len(a.records) == 5
    assert [r.accepted for r in a.records] == [r.accepted for r in b.records]
    np.testing.assert_array_equal(
        a.observables.history("plaquette.value"), b.observables.history("plaquette.value")
    )
    assert a.checkpointer.available() == [5]
    assert all(np.isfinite(r.dH) for r in a.records)
    assert 0.0 < a.observables.history("plaquette.value")[-1] < 1.0
