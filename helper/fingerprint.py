"""
Deduplication keys for operations.
"""

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional


def stable_hash(value: Any) -> str:
    """
    Hash a JSON-like value independent of mapping key order.

    :param value: Any JSON serialisable value; unknown types use ``str``.
    :returns: 16 hex characters.
    """
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()[:16]


def salient_payload(
    name: str,
    payload: Mapping[str, Any],
    salient_fields: Optional[Mapping[str, List[str]]] = None,
) -> Dict[str, Any]:
    """
    Select the payload fields that identify an operation.

    Configured fields for the name win; a ``setting_key`` identifies single
    setting updates; otherwise the whole payload is salient.
    """
    fields = (salient_fields or {}).get(name)
    if fields:
        return {key: payload.get(key) for key in fields if key in payload}
    if "setting_key" in payload:
        return {"setting_key": payload["setting_key"]}
    return dict(payload)


def create_fingerprint(
    name: str,
    payload: Optional[Mapping[str, Any]] = None,
    salient_fields: Optional[Mapping[str, List[str]]] = None,
) -> str:
    """
    Derive the fingerprint ``name:hash`` of an operation.

    :param name: Operation name.
    :param payload: Operation payload.
    :param salient_fields: Per-name list of identifying payload fields.
    :returns: The fingerprint, or just the name for an empty salient payload.
    """
    selected = salient_payload(name, payload or {}, salient_fields)
    if not selected:
        return name
    return f"{name}:{stable_hash(selected)}"
