import numpy as np
import jax.numpy as jnp


tau = 0.5j * jnp.array(
    [
        [[0.0, 1.0], [1.0, 0.0]],
        [[0.0, 1.0j], [-1.0j, 0.0]],
        [[1.0, 0.0], [0.0, -1.0]],
    ],
    dtype=jnp.complex128,
)


def check_algebra():
    foo = jnp.einsum("aik,bkj->abij", tau, tau)
    foo = foo - jnp.swapaxes(foo, 0, 1)
    eps = jnp.zeros((3, 3, 3), dtype=tau.dtype)
    for a, b, c in ((0, 1, 2), (1, 2, 0), (2, 0, 1)):
        eps = eps.at[a, b, c].set(1.0).at[b, a, c].set(-1.0)
    boo = jnp.einsum("abk,kij->abij", eps, tau)
    return jnp.linalg.norm(foo - boo) / jnp.linalg.norm(boo)


def expo(X):
    # exp of a traceless anti-Hermitian 2x2 matrix: cos|x| + X sin|x|/|x|
    nn = (jnp.linalg.norm(X, axis=(-1, -2), keepdims=True) / np.sqrt(2.0)) + jnp.finfo(X.real.dtype).eps
    I = jnp.broadcast_to(jnp.eye(2, dtype=X.dtype), X.shape)
    return jnp.cos(nn) * I + X * (jnp.sin(nn) / nn)


def evolve_fused(dt, p, q):
    """exp(dt*p) @ q without materializing exp(dt*p)."""
    x = dt * p
    n = (jnp.linalg.norm(x, axis=(-1, -2), keepdims=True) / np.sqrt(2.0)) + jnp.finfo(x.real.dtype).eps
    return jnp.cos(n) * q + (jnp.sin(n) / n) * (x @ q)

