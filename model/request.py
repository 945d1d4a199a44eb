"""
Transport request and response model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass
class FormBody:
    """A url-encoded request body."""

    content: str
    content_type: str = "application/x-www-form-urlencoded; charset=UTF-8"


@dataclass
class MultipartBody:
    """A multipart body; files map field name to (filename, bytes, content type)."""

    fields: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, Tuple[str, bytes, str]] = field(default_factory=dict)


Body = Union[FormBody, MultipartBody]


@dataclass
class TransportRequest:
    """A single HTTP request handed to the transport."""

    url: str = ""
    method: str = "POST"
    body: Optional[Body] = None
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    validate_envelope: bool = True


@dataclass
class TransportResponse:
    """A successful (status < 400) HTTP response with its decoded body."""

    data: Any
    status: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400
