"""
Cache key derivation.

Logically identical calls must map to the same key whatever the incidental
JSON formatting of the request (object key order, whitespace, 1 vs 1.0).
"""
import hashlib
import json
from typing import Any, Sequence

PRIMARY_PREFIX = "rpc:"


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def canonical_serialize(params: Sequence[Any]) -> str:
    """Deterministic JSON rendering of a params list."""
    return json.dumps(
        _normalize(list(params)),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def primary_key(method: str, params: Sequence[Any]) -> str:
    """Primary store key for a call, e.g. ``rpc:getBalance:["addr"]``."""
    return f"{PRIMARY_PREFIX}{method}:{canonical_serialize(params)}"


def content_hash(params: Sequence[Any]) -> str:
    """SHA-256 of the canonical params, used for the ``hash:`` index."""
    return hashlib.sha256(canonical_serialize(params).encode("utf-8")).hexdigest()
