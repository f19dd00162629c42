"""NERSC-style gauge configuration files and the RNG state companion file."""

from __future__ import annotations

import contextlib
import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import jax.numpy as jnp
import numpy as np

from jaxhmc.errors import CheckpointLoadFailure, CheckpointWriteFailure
from jaxhmc.LieGroups import reunitarize
from jaxhmc.models.gauge import plaquette_sum


HDR_VERSION = "1.0"
FLOAT_DTYPES = {"IEEE64BIG": ">c16", "IEEE32BIG": ">c8"}
PLAQ_TOL = {"IEEE64BIG": 1e-10, "IEEE32BIG": 1e-5}
_DATATYPE_RE = re.compile(r"^(\d+)D_SU(\d+)_GAUGE_(\d+)x(\d+)$")
RNG_STREAMS = ("serial", "parallel")
RNG_STATE_WORDS = 2


@dataclass(frozen=True)
class NerscHeader:
    """Parsed header fields; `fields` keeps every KEY = VALUE pair verbatim."""

    fields: Dict[str, str]
    data_offset: int

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.fields.get(key, default)

    def require(self, key: str) -> str:
        if key not in self.fields:
            raise CheckpointLoadFailure(f"NERSC header is missing {key}")
        return self.fields[key]


def checksum32(payload: bytes) -> int:
    """Sum of the payload as big-endian uint32 words, mod 2^32."""
    if len(payload) % 4:
        raise ValueError("payload length must be a multiple of 4 bytes")
    words = np.frombuffer(payload, dtype=">u4")
    return int(np.sum(words, dtype=np.uint64) & np.uint64(0xFFFFFFFF))


def _format_header(fields: Dict[str, str]) -> bytes:
    lines = ["BEGIN_HEADER"]
    lines.extend(f"{k} = {v}" for k, v in fields.items())
    lines.append("END_HEADER")
    return ("\n".join(lines) + "\n").encode("ascii")


def parse_header(blob: bytes) -> NerscHeader:
    end_tag = b"END_HEADER\n"
    if not blob.startswith(b"BEGIN_HEADER"):
        raise CheckpointLoadFailure("missing BEGIN_HEADER")
    end = blob.find(end_tag)
    if end < 0:
        raise CheckpointLoadFailure("missing END_HEADER")
    try:
        text = blob[:end].decode("ascii")
    except UnicodeDecodeError as e:
        raise CheckpointLoadFailure(f"non-ASCII header: {e}") from e
    fields: Dict[str, str] = {}
    for line in text.splitlines()[1:]:
        if not line.strip():
            continue
        key, sep, val = line.partition("=")
        if not sep:
            raise CheckpointLoadFailure(f"malformed header line {line!r}")
        fields[key.strip()] = val.strip()
    return NerscHeader(fields=fields, data_offset=end + len(end_tag))


def _site_major(q: np.ndarray) -> np.ndarray:
    """(Nd, x, y, z, t, Nc, Nc) -> (t, z, y, x, Nd, Nc, Nc): x runs fastest in the file."""
    Nd = q.shape[0]
    axes = list(range(Nd, 0, -1)) + [0, Nd + 1, Nd + 2]
    return np.transpose(q, axes)


def _from_site_major(a: np.ndarray, Nd: int) -> np.ndarray:
    axes = [Nd] + list(range(Nd - 1, -1, -1)) + [Nd + 1, Nd + 2]
    return np.transpose(a, axes)


def _plaquette(q: np.ndarray) -> float:
    Nd, Nc = q.shape[0], q.shape[-1]
    vol = int(np.prod(q.shape[1 : 1 + Nd]))
    nplanes = Nd * (Nd - 1) // 2
    return float(plaquette_sum(jnp.asarray(q))) / (vol * nplanes * Nc)


def _link_trace(q: np.ndarray) -> float:
    Nc = q.shape[-1]
    return float(np.mean(np.real(np.einsum("...aa->...", q)))) / Nc


def atomic_write(path: str | Path, blob: bytes) -> None:
    """Write through a temporary file and rename; readers see the old or the new file."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "wb") as f:
            f.write(blob)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise CheckpointWriteFailure(f"could not write {path}: {e}") from e


def encode_gauge(
    q,
    sequence_number: int,
    fmt: str = "IEEE64BIG",
    ensemble_id: str = "jaxhmc",
    record_id: Optional[str] = None,
) -> bytes:
    if fmt not in FLOAT_DTYPES:
        raise ValueError(f"Unsupported floating point format {fmt!r}")
    q = np.asarray(q)
    Nd, Nc = q.shape[0], q.shape[-1]
    payload = np.ascontiguousarray(_site_major(q)).astype(FLOAT_DTYPES[fmt]).tobytes()
    fields = {"HDR_VERSION": HDR_VERSION, "DATATYPE": f"{Nd}D_SU{Nc}_GAUGE_{Nc}x{Nc}", "STORAGE_FORMAT": "1.0"}
    for i, L in enumerate(q.shape[1 : 1 + Nd]):
        fields[f"DIMENSION_{i + 1}"] = str(int(L))
    for i in range(Nd):
        fields[f"BOUNDARY_{i + 1}"] = "PERIODIC"
    fields["LINK_TRACE"] = repr(_link_trace(q))
    fields["PLAQUETTE"] = repr(_plaquette(q))
    fields["CHECKSUM"] = f"{checksum32(payload):08x}"
    fields["ENSEMBLE_ID"] = ensemble_id
    fields["SEQUENCE_NUMBER"] = str(int(sequence_number))
    fields["CREATOR"] = "jaxhmc"
    fields["CREATION_DATE"] = time.strftime("%Y-%m-%d %H:%M:%S")
    fields["FLOATING_POINT"] = fmt
    if record_id is not None:
        fields["RECORD_ID"] = record_id
    return _format_header(fields) + payload


def decode_gauge(blob: bytes) -> Tuple[np.ndarray, NerscHeader]:
    """Decode and verify a gauge file; returns links as (Nd, *L, Nc, Nc) complex128."""
    hdr = parse_header(blob)
    version = hdr.require("HDR_VERSION")
    if version != HDR_VERSION:
        raise CheckpointLoadFailure(f"unsupported HDR_VERSION {version} (expected {HDR_VERSION})")
    m = _DATATYPE_RE.match(hdr.require("DATATYPE"))
    if m is None:
        raise CheckpointLoadFailure(f"unsupported DATATYPE {hdr.get('DATATYPE')}")
    Nd, Nc = int(m.group(1)), int(m.group(2))
    fmt = hdr.require("FLOATING_POINT")
    if fmt not in FLOAT_DTYPES:
        raise CheckpointLoadFailure(f"unsupported FLOATING_POINT {fmt}")
    try:
        dims = tuple(int(hdr.require(f"DIMENSION_{i + 1}")) for i in range(Nd))
    except ValueError as e:
        raise CheckpointLoadFailure(f"bad DIMENSION entry: {e}") from e
    payload = blob[hdr.data_offset :]
    expected = int(np.prod(dims)) * Nd * Nc * Nc * np.dtype(FLOAT_DTYPES[fmt]).itemsize
    if len(payload) != expected:
        raise CheckpointLoadFailure(f"payload has {len(payload)} bytes, expected {expected}")
    if f"{checksum32(payload):08x}" != hdr.require("CHECKSUM").lower():
        raise CheckpointLoadFailure("checksum mismatch")
    a = np.frombuffer(payload, dtype=FLOAT_DTYPES[fmt]).reshape(tuple(reversed(dims)) + (Nd, Nc, Nc))
    q = _from_site_major(a, Nd).astype(np.complex128)
    if fmt == "IEEE32BIG":
        q = np.asarray(reunitarize(jnp.asarray(q)))
    plaq = _plaquette(q)
    try:
        ref = float(hdr.require("PLAQUETTE"))
    except ValueError as e:
        raise CheckpointLoadFailure(f"bad PLAQUETTE entry: {e}") from e
    if abs(plaq - ref) > PLAQ_TOL[fmt] * max(1.0, abs(ref)):
        raise CheckpointLoadFailure(f"plaquette mismatch: header {ref} computed {plaq}")
    return q, hdr


def encode_rng(state: Dict[str, np.ndarray], sequence_number: int, record_id: Optional[str] = None) -> bytes:
    names = RNG_STREAMS
    words = [np.asarray(state[n], dtype=np.uint32).reshape(-1) for n in names]
    payload = np.concatenate(words).astype(">u4").tobytes()
    fields = {"HDR_VERSION": HDR_VERSION, "DATATYPE": "RNG_STATE", "STREAMS": " ".join(names)}
    for n, w in zip(names, words):
        fields[f"WORDS_{n.upper()}"] = str(w.size)
    fields["CHECKSUM"] = f"{checksum32(payload):08x}"
    fields["SEQUENCE_NUMBER"] = str(int(sequence_number))
    if record_id is not None:
        fields["RECORD_ID"] = record_id
    return _format_header(fields) + payload


def decode_rng(blob: bytes) -> Tuple[Dict[str, np.ndarray], NerscHeader]:
    hdr = parse_header(blob)
    version = hdr.require("HDR_VERSION")
    if version != HDR_VERSION:
        raise CheckpointLoadFailure(f"unsupported HDR_VERSION {version} (expected {HDR_VERSION})")
    if hdr.require("DATATYPE") != "RNG_STATE":
        raise CheckpointLoadFailure(f"not an RNG state file: DATATYPE={hdr.get('DATATYPE')}")
    payload = blob[hdr.data_offset :]
    if len(payload) % 4 or f"{checksum32(payload):08x}" != hdr.require("CHECKSUM").lower():
        raise CheckpointLoadFailure("RNG checksum mismatch")
    words = np.frombuffer(payload, dtype=">u4").astype(np.uint32)
    state: Dict[str, np.ndarray] = {}
    pos = 0
    streams = hdr.require("STREAMS").split()
    if sorted(streams) != sorted(RNG_STREAMS):
        raise CheckpointLoadFailure(f"RNG file holds streams {streams}, expected {list(RNG_STREAMS)}")
    for n in streams:
        try:
            k = int(hdr.require(f"WORDS_{n.upper()}"))
        except ValueError as e:
            raise CheckpointLoadFailure(f"bad WORDS_{n.upper()} entry: {e}") from e
        if k != RNG_STATE_WORDS:
            raise CheckpointLoadFailure(f"stream {n} has {k} state words, expected {RNG_STATE_WORDS}")
        state[n] = words[pos : pos + k].copy()
        pos += k
    if pos != words.size:
        raise CheckpointLoadFailure(f"RNG payload has {words.size} words, header declares {pos}")
    return state, hdr


def write_gauge(path: str | Path, q, sequence_number: int, fmt: str = "IEEE64BIG") -> None:
    atomic_write(path, encode_gauge(q, sequence_number, fmt=fmt))


def read_gauge(path: str | Path) -> Tuple[np.ndarray, NerscHeader]:
    return decode_gauge(Path(path).read_bytes())


class NerscCheckpointer:
    """Checkpoint record = `<config_prefix>.<N>` + `<rng_prefix>.<N>`, N = completed trajectories.

    The config file is written first, so a record counts as complete once
    its RNG file exists. Both files carry the same RECORD_ID; `load` rejects
    a pair whose ids differ.
    """

    def __init__(self, params, theory=None):
        self.params = params
        self.theory = theory

    def config_path(self, trajectory: int) -> Path:
        return Path(f"{self.params.config_prefix}.{int(trajectory)}")

    def rng_path(self, trajectory: int) -> Path:
        return Path(f"{self.params.rng_prefix}.{int(trajectory)}")

    def due(self, completed: int) -> bool:
        return int(completed) > 0 and int(completed) % int(self.params.save_interval) == 0

    def save(self, trajectory: int, q, rng_state: Dict[str, np.ndarray]) -> Tuple[Path, Path]:
        cfg_path = self.config_path(trajectory)
        rng_path = self.rng_path(trajectory)
        record_id = uuid.uuid4().hex
        # a stale RNG file must not pair with the new config if this save fails
        try:
            rng_path.unlink(missing_ok=True)
        except OSError as e:
            raise CheckpointWriteFailure(f"could not remove stale {rng_path}: {e}") from e
        atomic_write(cfg_path, encode_gauge(q, trajectory, fmt=self.params.format, record_id=record_id))
        try:
            atomic_write(rng_path, encode_rng(rng_state, trajectory, record_id=record_id))
        except CheckpointWriteFailure:
            with contextlib.suppress(OSError):
                cfg_path.unlink()
            raise
        return cfg_path, rng_path

    def _indices(self, prefix: str) -> set:
        p = Path(prefix)
        directory = p.parent
        if not directory.is_dir():
            return set()
        pat = re.compile(re.escape(p.name) + r"\.(\d+)$")
        out = set()
        for entry in directory.iterdir():
            m = pat.match(entry.name)
            if m is not None and entry.is_file():
                out.add(int(m.group(1)))
        return out

    def available(self) -> list:
        return sorted(self._indices(self.params.config_prefix) & self._indices(self.params.rng_prefix))

    def latest(self) -> Optional[int]:
        idx = self.available()
        return idx[-1] if idx else None

    def load(self, trajectory: Optional[int] = None):
        """(trajectory, q, rng_state) for the given or latest complete record, else None."""
        if trajectory is None:
            trajectory = self.latest()
            if trajectory is None:
                return None
        elif int(trajectory) not in self.available():
            return None
        trajectory = int(trajectory)
        try:
            q, hdr = read_gauge(self.config_path(trajectory))
            rng_state, rng_hdr = decode_rng(self.rng_path(trajectory).read_bytes())
            seq = int(hdr.get("SEQUENCE_NUMBER", trajectory))
            rng_seq = int(rng_hdr.get("SEQUENCE_NUMBER", trajectory))
        except CheckpointLoadFailure:
            raise
        except (OSError, ValueError) as e:
            raise CheckpointLoadFailure(f"could not read checkpoint {trajectory}: {e}") from e
        if self.theory is not None and tuple(q.shape) != tuple(self.theory.field_shape()):
            raise CheckpointLoadFailure(
                f"checkpoint field shape {q.shape} does not match {self.theory.field_shape()}"
            )
        if seq != trajectory or rng_seq != trajectory:
            raise CheckpointLoadFailure(
                f"SEQUENCE_NUMBER {seq}/{rng_seq} does not match file index {trajectory}"
            )
        if hdr.get("RECORD_ID") != rng_hdr.get("RECORD_ID"):
            raise CheckpointLoadFailure(
                f"checkpoint {trajectory}: config and RNG files come from different saves"
            )
        return trajectory, jnp.asarray(q), rng_state
