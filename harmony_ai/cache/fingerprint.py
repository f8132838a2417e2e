import hashlib
import json
from enum import Enum
from typing import Any, Dict, Optional


def normalize(value: Any) -> Any:
    """Strip strings, drop None entries, and unwrap enums, recursively."""
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k): normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(normalize(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_fingerprint(
    operation: str,
    payload: Dict[str, Any],
    options: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> str:
    """
    SHA-256 over the canonical request content.

    Args:
        operation: Operation name.
        payload: Validated payload, snake_case keys.
        options: Only the options that change the generated content.
        user_id: Pass only for user-scoped operations; otherwise identical
            requests from different users share a fingerprint.
    """
    document = {
        "operation": getattr(operation, "value", operation),
        "payload": payload,
        "options": options or {},
    }
    if user_id is not None:
        document["user_id"] = user_id
    return hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()
