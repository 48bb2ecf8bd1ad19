"""Canonical hashing helpers for fingerprints and config identity."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes with sorted keys and compact separators."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def config_hash(config: bytes) -> str:
    """Identity of an opaque configuration blob, in "sha256:<hex>" format."""
    return f"sha256:{sha256_hex(config)}"


def cmdline_hash(cmdline: list[str]) -> str:
    """SHA-256 of a canonical command line.

    Pins the executable identity of a spawned process so a reused PID
    running a different program never matches.
    """
    return sha256_hex(canonical_json_bytes([str(part) for part in cmdline]))
