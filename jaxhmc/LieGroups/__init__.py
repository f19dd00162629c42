"""Lie-group helpers for SU(N) link fields."""

import jax
import jax.numpy as jnp


def dagger(X):
    return jnp.conj(jnp.swapaxes(X, -1, -2))


def trace(X):
    return jnp.einsum("...aa->...", X)


def ad(x, y):
    return x @ y - y @ x


def LieProjectCmplx(X):
    """Traceless anti-Hermitian part of a batch of complex N x N matrices."""
    N = X.shape[-1]
    Y = 0.5 * (X - dagger(X))
    T = (trace(Y) / N)[..., None, None]
    I = jnp.eye(N, dtype=X.dtype)
    return Y - jnp.broadcast_to(I, X.shape) * T


def expo(X):
    return jax.scipy.linalg.expm(X)


def reunitarize(U):
    """Project a batch of near-unitary matrices back onto SU(N) via QR."""
    Q, R = jnp.linalg.qr(U)
    d = jnp.diagonal(R, axis1=-2, axis2=-1)
    Q = Q * (d / jnp.abs(d))[..., None, :]
    det = jnp.linalg.det(Q)
    N = U.shape[-1]
    phase = jnp.exp(-1j * jnp.angle(det) / N)
    return Q * phase[..., None, None]


from . import su2  # noqa: E402
