"""
Request body encoding for the admin endpoint.
"""

import json
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import urlencode

from ..model.request import Body, FormBody, MultipartBody

BINARY_TYPES = (bytes, bytearray, memoryview)


def encode_value(value: Any) -> str:
    """Encode one payload value as a form field string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def form_fields(data: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Convert a mapping to ordered form fields, dropping None values."""
    return [
        (key, encode_value(value))
        for key, value in data.items()
        if value is not None and not isinstance(value, BINARY_TYPES)
    ]


def has_binary(data: Mapping[str, Any]) -> bool:
    return any(isinstance(value, BINARY_TYPES) for value in data.values())


def encode_body(data: Mapping[str, Any]) -> Body:
    """
    Encode request data as a url-encoded body, or multipart if any value is
    binary.

    :param data: Request fields in insertion order.
    :returns: FormBody or MultipartBody.
    """
    if not has_binary(data):
        return FormBody(content=urlencode(form_fields(data)))

    files: Dict[str, Tuple[str, bytes, str]] = {
        key: (key, bytes(value), "application/octet-stream")
        for key, value in data.items()
        if isinstance(value, BINARY_TYPES)
    }
    return MultipartBody(fields=dict(form_fields(data)), files=files)
