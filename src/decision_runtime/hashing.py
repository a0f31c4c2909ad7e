"""
Deterministic serialization and hashing helpers.

This module consolidates the hashing used throughout the runtime:
- blake3 content hashes for proposal fingerprints and policy input digests
- sha256 digests for wire-compatible identifiers (retry keys, action refs)
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Literal

from blake3 import blake3

HashAlgorithm = Literal["blake3", "sha256"]


def canonicalize(obj: Any) -> Any:
    """Convert objects into JSON-friendly, deterministic structures."""
    if isinstance(obj, dict):
        return {str(k): canonicalize(obj[k]) for k in sorted(obj, key=str)}
    if isinstance(obj, (list, tuple)):
        return [canonicalize(v) for v in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(canonicalize(v) for v in obj)
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return canonicalize(obj.to_dict())
    return obj


def stable_json_dumps(obj: Any) -> str:
    """Dump an object to JSON with stable ordering for hashing."""
    return json.dumps(
        canonicalize(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    )


def compute_hash(
    data: str | bytes,
    algorithm: HashAlgorithm = "blake3",
    truncate: int | None = None,
) -> str:
    """
    Compute a hash using the specified algorithm.

    Args:
        data: Input data to hash (string or bytes)
        algorithm: "blake3" (default) or "sha256" for wire-compatible ids
        truncate: Truncate output to N characters

    Returns:
        Hexadecimal hash string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    if algorithm == "blake3":
        result = blake3(data).hexdigest()
    elif algorithm == "sha256":
        result = hashlib.sha256(data).hexdigest()
    else:
        raise ValueError(f"Unknown algorithm: {algorithm}")

    return result[:truncate] if truncate else result


def content_hash(obj: Any) -> str:
    """Deterministic blake3 hash of any JSON-serializable object."""
    return blake3(stable_json_dumps(obj).encode("utf-8")).hexdigest()


__all__ = [
    "HashAlgorithm",
    "canonicalize",
    "stable_json_dumps",
    "compute_hash",
    "content_hash",
]
