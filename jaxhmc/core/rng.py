"""Serial and parallel random streams with checkpointable state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from jaxhmc.errors import InvalidParameter
from jaxhmc.params import parse_seeds


Array = jax.Array

KEY_IMPL = "threefry2x32"
KEY_WORDS = 2


def seed_key(seeds: str | Sequence[int]) -> Array:
    """Typed threefry key from a seed list, mixed through SeedSequence."""
    words = np.random.SeedSequence(list(parse_seeds(seeds))).generate_state(KEY_WORDS, dtype=np.uint32)
    return jax.random.wrap_key_data(jnp.asarray(words, dtype=jnp.uint32), impl=KEY_IMPL)


@dataclass
class RandomStream:
    """One stream of draws; every draw advances the key by a split."""

    seeds: str | Sequence[int]
    name: str = "stream"
    draws: int = field(default=0, init=False)
    key: Array = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.key = seed_key(self.seeds)

    def _split_key(self) -> Array:
        self.key, sub = jax.random.split(self.key)
        self.draws += 1
        return sub

    def gaussian(self, shape: Tuple[int, ...], dtype=jnp.float64) -> Array:
        return jax.random.normal(self._split_key(), tuple(shape), dtype=dtype)

    def complex_gaussian(self, shape: Tuple[int, ...], dtype=jnp.complex128) -> Array:
        """Complex normals with <|z|^2> = 1."""
        re = self.gaussian(shape)
        im = self.gaussian(shape)
        return (np.sqrt(0.5) * (re + 1j * im)).astype(dtype)

    def uniform(self, shape: Tuple[int, ...] = (), dtype=jnp.float64) -> Array:
        return jax.random.uniform(self._split_key(), tuple(shape), dtype=dtype)

    def get_state(self) -> np.ndarray:
        return np.asarray(jax.random.key_data(self.key), dtype=np.uint32).reshape(KEY_WORDS)

    def set_state(self, words) -> None:
        words = np.asarray(words, dtype=np.uint32).reshape(-1)
        if words.size != KEY_WORDS:
            raise InvalidParameter(f"{self.name} RNG state needs {KEY_WORDS} words, got {words.size}")
        self.key = jax.random.wrap_key_data(jnp.asarray(words, dtype=jnp.uint32), impl=KEY_IMPL)


@dataclass
class RNGModule:
    """Process-wide random state.

    The parallel stream feeds site-local draws (momentum and pseudofermion
    heatbaths, random starts); the serial stream feeds the Metropolis test.
    """

    serial_seeds: str | Sequence[int] = "1 2 3 4 5"
    parallel_seeds: str | Sequence[int] = "6 7 8 9 10"
    serial: RandomStream = field(init=False)
    parallel: RandomStream = field(init=False)

    def __post_init__(self) -> None:
        self.serial = RandomStream(self.serial_seeds, name="serial")
        self.parallel = RandomStream(self.parallel_seeds, name="parallel")

    @classmethod
    def from_parameters(cls, params) -> "RNGModule":
        return cls(params.serial_seeds, params.parallel_seeds)

    def get_state(self) -> Dict[str, np.ndarray]:
        return {"serial": self.serial.get_state(), "parallel": self.parallel.get_state()}

    def set_state(self, state: Dict[str, np.ndarray]) -> None:
        missing = {"serial", "parallel"} - set(state)
        if missing:
            raise InvalidParameter(f"RNG state is missing streams: {sorted(missing)}")
        self.serial.set_state(state["serial"])
        self.parallel.set_state(state["parallel"])
