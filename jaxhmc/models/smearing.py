"""Stout link smearing (Morningstar-Peardon) as a differentiable field transform."""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp

from jaxhmc.LieGroups import dagger, expo
from jaxhmc.models.gauge import project_algebra, staple_sum


Array = jax.Array


def stout_step(U: Array, rho: float) -> Array:
    """U'_mu = exp(Proj(rho C_mu U_mu^dag)) U_mu with C_mu the plaquette staple sum."""
    out = []
    for mu in range(U.shape[0]):
        C = rho * staple_sum(U, mu)
        out.append(expo(project_algebra(C @ dagger(U[mu]))) @ U[mu])
    return jnp.stack(out, axis=0)


@dataclass(frozen=True)
class StoutSmearing:
    rho: float = 0.1
    n_smear: int = 1

    def __call__(self, U: Array) -> Array:
        for _ in range(int(self.n_smear)):
            U = stout_step(U, float(self.rho))
        return U
