"""
HTTP transport of the pipeliner, built on httpx.

Sends one request, enforces the deadline, decodes the body, checks the
response envelope and keeps running request metrics.
"""

import asyncio
import json
import time
from typing import Any, Dict, Optional

import httpx

from ..helper.error import (
    NetworkError,
    ParseError,
    RequestTimeoutError,
    TransportError,
    http_error_from_status,
)
from ..helper.logging import get_logger
from ..model.request import FormBody, MultipartBody, TransportRequest, TransportResponse

logger = get_logger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {"X-Requested-With": "XMLHttpRequest"}


def validate_envelope(data: Any) -> bool:
    """
    Check a decoded body against the ``{success, data}`` envelope.

    Mismatches are logged, never raised.

    :returns: False if the body does not look like an envelope.
    """
    if not isinstance(data, dict):
        logger.warning("Response is not an object", type=type(data).__name__)
        return False
    if not isinstance(data.get("success"), bool):
        logger.warning("Response missing boolean success field")
        return False
    if data["success"] is False and "data" not in data:
        logger.warning("Error response missing data field")
        return False
    return True


class HTTPTransport:
    """Sends requests to the backend and tracks request metrics."""

    def __init__(
        self,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = "",
    ):
        """
        :param timeout: Default deadline per request in seconds.
        :param headers: Headers added to every request.
        :param client: Shared httpx client; one is created when omitted.
        :param base_url: Base URL of the created client.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.timeout = timeout
        self.headers: Dict[str, str] = {**DEFAULT_HEADERS, **(headers or {})}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url)

        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_response_time = 0.0

    async def send(self, request: TransportRequest) -> TransportResponse:
        """
        Send a request.

        :param request: The request to send.
        :returns: The decoded response for a status below 400.
        :raises RequestTimeoutError: If the deadline passed before a response.
        :raises NetworkError: If no response was received.
        :raises HTTPError: For status 400 and above.
        :raises ParseError: If a JSON body could not be decoded.
        """
        timeout = request.timeout or self.timeout
        start = time.monotonic()
        self.total_requests += 1

        try:
            response = await asyncio.wait_for(
                self._request(request, timeout), timeout=timeout
            )
            if response.status_code >= 400:
                raise http_error_from_status(
                    response.status_code, response.reason_phrase, response.text
                )

            data = self._parse_body(response)
            if request.validate_envelope:
                validate_envelope(data)

        except TransportError as e:
            self._record(start, success=False)
            logger.debug("Request failed", url=request.url, error=e.__class__.__name__)
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            self._record(start, success=False)
            raise RequestTimeoutError(
                f"Request timeout after {timeout:.1f}s", e
            ).wrap(request.url)
        except httpx.HTTPError as e:
            self._record(start, success=False)
            raise NetworkError(f"Network error: {e}", e).wrap(request.url)

        elapsed = self._record(start, success=True)
        logger.debug(
            "Request completed",
            url=request.url,
            status=response.status_code,
            elapsed=f"{elapsed:.3f}s",
        )
        return TransportResponse(
            data=data,
            status=response.status_code,
            reason=response.reason_phrase,
            headers=dict(response.headers),
            elapsed=elapsed,
        )

    async def _request(
        self, request: TransportRequest, timeout: float
    ) -> httpx.Response:
        headers = {**self.headers, **request.headers}
        kwargs: Dict[str, Any] = {}

        if isinstance(request.body, FormBody):
            headers.setdefault("Content-Type", request.body.content_type)
            kwargs["content"] = request.body.content.encode("utf-8")
        elif isinstance(request.body, MultipartBody):
            kwargs["data"] = request.body.fields
            kwargs["files"] = request.body.files

        return await self.client.request(
            request.method,
            request.url,
            headers=headers,
            timeout=timeout,
            **kwargs,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response.text
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError("Failed to parse response", e)

    def _record(self, start: float, success: bool) -> float:
        elapsed = time.monotonic() - start
        self.total_response_time += elapsed
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        return elapsed

    @property
    def average_response_time(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_response_time / self.total_requests

    def get_metrics(self) -> Dict[str, Any]:
        total = self.total_requests
        return {
            "total_requests": total,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "total_response_time": self.total_response_time,
            "average_response_time": self.average_response_time,
            "success_rate": self.successful_requests / total * 100 if total else 0.0,
            "failure_rate": self.failed_requests / total * 100 if total else 0.0,
        }

    def reset_metrics(self) -> None:
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_response_time = 0.0

    def configure(
        self, timeout: Optional[float] = None, headers: Optional[Dict[str, str]] = None
    ) -> None:
        """Update the default timeout and merge additional headers."""
        if timeout is not None:
            if timeout <= 0:
                raise ValueError("timeout must be positive")
            self.timeout = timeout
        if headers:
            self.headers.update(headers)

    async def close(self) -> None:
        """Close the httpx client if this transport created it."""
        if self._owns_client:
            await self.client.aclose()
