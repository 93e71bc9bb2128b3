"""
kumo.hasher — Deterministic payload hashing for no-op detection.

Write payloads are hashed and the hash is stored in the remote object's
metadata, so a later run can tell an unchanged object apart without a
local ledger.
"""

import hashlib
import json
from typing import Any

PAYLOAD_HASH_KEY = "kumo.payload_hash"


def _normalize_value(value: Any) -> Any:
    """Normalize a value for stable hashing."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in sorted(value.items())}
    if hasattr(value, "__dict__"):
        return _normalize_value(vars(value))
    return str(value)


def compute_payload_hash(payload: dict[str, Any]) -> str:
    """
    Compute a deterministic hash of an API payload.

    Key order never affects the result; list order does.
    """
    normalized = _normalize_value(payload)
    canonical = json.dumps(normalized, sort_keys=True, ensure_ascii=True)
    return hashlib.sha256(canonical.encode()).hexdigest()


def is_unchanged(metadata: dict[str, str], payload: dict[str, Any]) -> bool:
    """True when ``metadata`` already records the hash of ``payload``."""
    return metadata.get(PAYLOAD_HASH_KEY) == compute_payload_hash(payload)


def with_payload_hash(
    payload: dict[str, Any], extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Return a copy of ``payload`` with its hash added as metadata.

    ``extra`` fields (create-only keys such as the parent or type reference)
    are merged in but left out of the hash, so a created object and a later
    update of the same content carry the same hash.
    """
    stamped = {**payload, **(extra or {})}
    stamped["metadata"] = [
        {"key": PAYLOAD_HASH_KEY, "value": compute_payload_hash(payload)},
    ]
    return stamped
