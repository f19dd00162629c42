"""SU(N) link fields: momenta, MD drift, Wilson loops and autodiff forces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from jaxhmc.LieGroups import LieProjectCmplx, dagger, expo, reunitarize, trace
from jaxhmc.LieGroups import su2 as su2_lg


Array = jax.Array


def project_algebra(x: Array) -> Array:
    return LieProjectCmplx(x)


def _algebra_inner(a: Array, b: Array) -> Array:
    # -sum Re tr(a b): positive for a == b anti-Hermitian
    return -jnp.sum(jnp.real(jnp.einsum("...ab,...ba->...", a, b)))


def _evolve_q_expm(dt: float, p: Array, q: Array) -> Array:
    return expo(dt * p) @ q


def _shift(x: Array, mu: int, shift: int = -1) -> Array:
    """x(x + mu) for shift=-1, x(x - mu) for shift=+1; x has a leading site axis per direction."""
    return jnp.roll(x, shift, axis=mu)


def plaquette_field(U: Array, mu: int, nu: int) -> Array:
    """U_mu(x) U_nu(x+mu) U_mu(x+nu)^dag U_nu(x)^dag for links U of shape (Nd, *L, Nc, Nc)."""
    U_mu, U_nu = U[mu], U[nu]
    return U_mu @ _shift(U_nu, mu) @ dagger(_shift(U_mu, nu)) @ dagger(U_nu)


def rectangle_field(U: Array, mu: int, nu: int) -> Array:
    """2x1 loop, long side in mu."""
    U_mu, U_nu = U[mu], U[nu]
    U_mu_xpmu = _shift(U_mu, mu)
    return (
        U_mu
        @ U_mu_xpmu
        @ _shift(_shift(U_nu, mu), mu)
        @ dagger(_shift(U_mu_xpmu, nu))
        @ dagger(_shift(U_mu, nu))
        @ dagger(U_nu)
    )


def plaquette_sum(U: Array) -> Array:
    """sum_{x, mu<nu} Re tr P_{mu nu}(x)."""
    Nd = U.shape[0]
    s = jnp.zeros((), dtype=jnp.real(U).dtype)
    for mu in range(Nd):
        for nu in range(mu + 1, Nd):
            s = s + jnp.sum(jnp.real(trace(plaquette_field(U, mu, nu))))
    return s


def rectangle_sum(U: Array) -> Array:
    """sum_{x, mu != nu} Re tr R_{mu nu}(x), both orientations."""
    Nd = U.shape[0]
    s = jnp.zeros((), dtype=jnp.real(U).dtype)
    for mu in range(Nd):
        for nu in range(Nd):
            if nu == mu:
                continue
            s = s + jnp.sum(jnp.real(trace(rectangle_field(U, mu, nu))))
    return s


def staple_sum(U: Array, mu: int) -> Array:
    """Sum of forward and backward plaquette staples closing U_mu(x)."""
    Nd = U.shape[0]
    U_mu = U[mu]
    staple = jnp.zeros_like(U_mu)
    for nu in range(Nd):
        if nu == mu:
            continue
        U_nu = U[nu]
        fwd = U_nu @ _shift(U_mu, nu) @ dagger(_shift(U_nu, mu))
        U_nu_m = _shift(U_nu, nu, +1)
        bwd = dagger(U_nu_m) @ _shift(U_mu, nu, +1) @ _shift(U_nu_m, mu)
        staple = staple + fwd + bwd
    return staple


@dataclass
class GaugeTheory:
    """Link field of shape (Nd, *lattice_shape, Nc, Nc); lattice axes x, y, z, t."""

    lattice_shape: Tuple[int, ...]
    Nc: int = 3
    exp_method: str = "expm"
    dtype: jnp.dtype = jnp.complex128
    _jit_cache: Dict[str, Callable] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.lattice_shape = tuple(int(v) for v in self.lattice_shape)
        self.Nd = len(self.lattice_shape)
        self.Nc = int(self.Nc)
        self.volume = int(np.prod(self.lattice_shape))
        self.exp_method = self.exp_method.lower()
        if self.exp_method not in ("expm", "su2"):
            raise ValueError("exp_method must be one of: expm, su2")
        if self.exp_method == "su2" and self.Nc != 2:
            raise ValueError("exp_method='su2' requires Nc=2")
        if self.exp_method == "su2":
            self._evolve_q = jax.jit(su2_lg.evolve_fused)
        else:
            self._evolve_q = jax.jit(_evolve_q_expm)

    def field_shape(self) -> Tuple[int, ...]:
        return (self.Nd, *self.lattice_shape, self.Nc, self.Nc)

    def fermion_shape(self) -> Tuple[int, ...]:
        return (*self.lattice_shape, self.Nc)

    def project_algebra(self, x: Array) -> Array:
        return project_algebra(x)

    def _sample_algebra(self, stream, scale: float = 1.0) -> Array:
        re = stream.gaussian(self.field_shape())
        im = stream.gaussian(self.field_shape())
        return project_algebra((scale * (re + 1j * im)).astype(self.dtype))

    def refresh_p(self, stream) -> Array:
        """Momentum distributed as exp(-kinetic(p))."""
        return self._sample_algebra(stream)

    def kinetic(self, p: Array) -> Array:
        return 0.5 * _algebra_inner(p, p)

    def evolve_q(self, dt: float, p: Array, q: Array) -> Array:
        return self._evolve_q(dt, p, q)

    def algebra_to_links(self, a: Array) -> Array:
        a = project_algebra(a)
        if self.exp_method == "su2":
            return su2_lg.expo(a)
        return expo(a)

    def cold_start(self) -> Array:
        eye = jnp.eye(self.Nc, dtype=self.dtype)
        return jnp.broadcast_to(eye, self.field_shape())

    def tepid_start(self, stream, scale: float = 0.1) -> Array:
        """Links exp(scale * X) with X a Gaussian algebra element."""
        return self.algebra_to_links(self._sample_algebra(stream, scale=scale))

    def hot_start(self, stream) -> Array:
        """Haar-distributed links from the QR decomposition of complex Gaussian matrices."""
        re = stream.gaussian(self.field_shape())
        im = stream.gaussian(self.field_shape())
        return reunitarize((re + 1j * im).astype(self.dtype))

    def _cached(self, name: str, fn: Callable) -> Callable:
        if name not in self._jit_cache:
            self._jit_cache[name] = jax.jit(fn)
        return self._jit_cache[name]

    def average_plaquette(self, q: Array) -> float:
        """<Re tr P / Nc>, equal to 1 on the unit configuration."""
        nplanes = self.Nd * (self.Nd - 1) // 2
        f = self._cached("plaq", plaquette_sum)
        return float(f(q)) / (self.volume * nplanes * self.Nc)

    def average_rectangle(self, q: Array) -> float:
        nrect = self.Nd * (self.Nd - 1)
        f = self._cached("rect", rectangle_sum)
        return float(f(q)) / (self.volume * nrect * self.Nc)

    def polyakov_loop(self, q: Array, direction: int | None = None) -> complex:
        """Volume average of tr prod_t U_t / Nc along the last (or given) direction."""
        d = self.Nd - 1 if direction is None else int(direction)
        U = q[d]
        P = U
        for _ in range(1, self.lattice_shape[d]):
            U = jnp.roll(U, -1, axis=d)
            P = P @ U
        loops = trace(jnp.take(P, 0, axis=d)) / self.Nc
        return complex(jnp.mean(loops))

    def link_trace(self, q: Array) -> float:
        """<Re tr U / Nc> over all links."""
        return float(jnp.mean(jnp.real(trace(q)))) / self.Nc

    def unitarity_violation(self, q: Array) -> float:
        eye = jnp.eye(self.Nc, dtype=q.dtype)
        return float(jnp.max(jnp.abs(q @ dagger(q) - eye)))

    def make_force(self, action_fn: Callable[..., Array]) -> Callable[..., Array]:
        """Jitted force Proj(U dS/dU^T) of a real action `action_fn(U, *args)` by autodiff.

        The sign matches `kinetic` and `evolve_q` so that p <- p + dt F
        conserves kinetic(p) + S(q).
        """
        dtype = self.dtype

        def _split_action(u_re: Array, u_im: Array, *args) -> Array:
            return action_fn((u_re + 1j * u_im).astype(dtype), *args)

        grad_re_im = jax.grad(_split_action, argnums=(0, 1))

        def force_fn(u: Array, *args) -> Array:
            g_re, g_im = grad_re_im(jnp.real(u), jnp.imag(u), *args)
            dS_dU = (g_re - 1j * g_im).astype(dtype)
            return project_algebra(u @ jnp.swapaxes(dS_dU, -1, -2))

        return jax.jit(force_fn)
