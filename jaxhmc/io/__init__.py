"""Checkpoint file formats."""

from .nersc import (
    NerscCheckpointer,
    NerscHeader,
    checksum32,
    decode_gauge,
    decode_rng,
    encode_gauge,
    encode_rng,
    read_gauge,
    write_gauge,
)

__all__ = [
    "NerscCheckpointer",
    "NerscHeader",
    "checksum32",
    "decode_gauge",
    "decode_rng",
    "encode_gauge",
    "encode_rng",
    "read_gauge",
    "write_gauge",
]
