import hashlib
import json
from typing import Any


def _normalize_values(obj: Any) -> Any:
    """Recursively normalize floats that are integers to actual ints."""
    if isinstance(obj, dict):
        return {k: _normalize_values(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize_values(i) for i in obj]
    if isinstance(obj, float) and obj.is_integer():
        return int(obj)
    return obj


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Produce a canonical JSON byte string for request fingerprinting.

    Rules:
    1. Keys sorted lexicographically.
    2. No whitespace (separators: (',', ':')).
    3. Integral floats are written as ints (1.0 -> 1).
    4. UTF-8 encoded.
    """
    normalized = _normalize_values(obj)

    canonical_str = json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False
    )
    return canonical_str.encode("utf-8")


def payload_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical form. ``None`` hashes like an empty object."""
    return hashlib.sha256(canonical_json_bytes(obj if obj is not None else {})).hexdigest()
