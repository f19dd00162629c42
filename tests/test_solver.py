import jax.numpy as jnp
import numpy as np
import pytest
from jax.tree_util import Partial

from jaxhmc.core.solver import ConjugateGradient
from jaxhmc.errors import ConvergenceFailure


def _matvec(A, x):
    return A @ x


def _hpd_system(np_rng, n=24):
    B = np_rng.normal(size=(n, n)) + 1j * np_rng.normal(size=(n, n))
    A = B @ B.conj().T + n * np.eye(n)
    b = np_rng.normal(size=n) + 1j * np_rng.normal(size=n)
    return jnp.asarray(A), jnp.asarray(b)


def test_cg_converges_to_tolerance(np_rng):
    A, b = _hpd_system(np_rng)
    cg = ConjugateGradient(tol=1e-10, maxiter=500)
    res = cg.solve(Partial(_matvec, A), b)
    rel = float(jnp.linalg.norm(A @ res.x - b) / jnp.linalg.norm(b))
    assert rel < 1e-9
    assert res.residual < 1e-9
    assert 0 < res.iterations <= 100
    assert cg.calls == 1
    assert cg.total_iterations == res.iterations


def test_cg_accepts_plain_callable(np_rng):
    A, b = _hpd_system(np_rng, n=8)
    res = ConjugateGradient(tol=1e-10).solve(lambda x: A @ x, b)
    np.testing.assert_allclose(np.asarray(res.x), np.linalg.solve(np.asarray(A), np.asarray(b)), rtol=1e-8)


def test_cg_raises_past_iteration_cap(np_rng):
    A, b = _hpd_system(np_rng)
    cg = ConjugateGradient(tol=1e-14, maxiter=2)
    with pytest.raises(ConvergenceFailure) as exc:
        cg.solve(Partial(_matvec, A), b)
    assert exc.value.iterations == 2
    assert exc.value.residual > 1e-14
    assert exc.value.tol == 1e-14


def test_cg_zero_rhs_returns_zero(np_rng):
    A, b = _hpd_system(np_rng, n=6)
    res = ConjugateGradient().solve(Partial(_matvec, A), jnp.zeros_like(b))
    assert res.iterations == 0
    assert float(jnp.max(jnp.abs(res.x))) == 0.0


def test_cg_exact_initial_guess_takes_no_iterations(np_rng):
    A, b = _hpd_system(np_rng, n=10)
    x_exact = jnp.asarray(np.linalg.solve(np.asarray(A), np.asarray(b)))
    res = ConjugateGradient(tol=1e-8).solve(Partial(_matvec, A), b, x0=x_exact)
    assert res.iterations == 0


def test_cg_per_call_overrides(np_rng):
    A, b = _hpd_system(np_rng)
    cg = ConjugateGradient(tol=1e-14, maxiter=2)
    res = cg.solve(Partial(_matvec, A), b, tol=1e-8, maxiter=1000)
    assert res.residual < 1e-7


def test_cg_raises_on_singular_operator():
    b = jnp.ones(4, dtype=jnp.complex128)
    cg = ConjugateGradient(tol=1e-8, maxiter=50)
    with pytest.raises(ConvergenceFailure) as exc:
        cg.solve(Partial(jnp.multiply, 0.0), b)
    assert not np.isfinite(exc.value.residual)


def test_cg_raises_on_non_finite_operator():
    A = jnp.eye(4, dtype=jnp.complex128) * jnp.nan
    b = jnp.ones(4, dtype=jnp.complex128)
    with pytest.raises(ConvergenceFailure):
        ConjugateGradient(tol=1e-8, maxiter=50).solve(Partial(_matvec, A), b)
