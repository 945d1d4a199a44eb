"""
Tests for the HTTP transport using httpx.MockTransport.
"""

import asyncio
import json
import unittest
from typing import List
from urllib.parse import parse_qsl

import httpx

from .transport import HTTPTransport, validate_envelope
from ..helper.encoding import encode_body
from ..helper.error import (
    ClientError,
    NetworkError,
    ParseError,
    RateLimitError,
    RequestTimeoutError,
    SecurityError,
    ServerError,
)
from ..model.request import TransportRequest

URL = "https://backend.test/wp-admin/admin-ajax.php"


def _transport(handler) -> HTTPTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTransport(timeout=5.0, client=client)


class TestHTTPTransport(unittest.IsolatedAsyncioTestCase):
    """Test cases for HTTPTransport.send."""

    async def test_form_request(self):
        """Test that form bodies are posted url-encoded with default headers."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": {"saved": 1}})

        transport = _transport(handler)
        body = encode_body({"action": "las_save_settings", "nonce": "abc"})

        response = await transport.send(TransportRequest(url=URL, body=body))

        self.assertEqual(response.status, 200)
        self.assertTrue(response.ok)
        self.assertEqual(response.data, {"success": True, "data": {"saved": 1}})
        request = seen[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.headers["X-Requested-With"], "XMLHttpRequest")
        self.assertTrue(
            request.headers["Content-Type"].startswith(
                "application/x-www-form-urlencoded"
            )
        )
        self.assertEqual(
            parse_qsl(request.content.decode()),
            [("action", "las_save_settings"), ("nonce", "abc")],
        )

    async def test_multipart_request(self):
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": None})

        transport = _transport(handler)
        body = encode_body({"action": "las_import", "file": b"settings"})

        await transport.send(TransportRequest(url=URL, body=body))

        self.assertTrue(
            seen[0].headers["Content-Type"].startswith("multipart/form-data")
        )
        self.assertIn(b"settings", seen[0].content)

    async def test_text_body(self):
        transport = _transport(lambda request: httpx.Response(200, text="0"))

        response = await transport.send(
            TransportRequest(url=URL, validate_envelope=False)
        )

        self.assertEqual(response.data, "0")

    async def test_status_errors(self):
        test_cases = [
            (500, "", ServerError),
            (429, "", RateLimitError),
            (403, "Invalid nonce", SecurityError),
            (403, "Forbidden", ClientError),
            (404, "", ClientError),
        ]

        for status, text, expected in test_cases:
            with self.subTest(status=status, text=text):
                transport = _transport(
                    lambda request, s=status, t=text: httpx.Response(s, text=t)
                )
                with self.assertRaises(expected) as cm:
                    await transport.send(TransportRequest(url=URL))
                self.assertEqual(cm.exception.status, status)

    async def test_invalid_json(self):
        transport = _transport(
            lambda request: httpx.Response(
                200, content=b"{not json", headers={"content-type": "application/json"}
            )
        )

        with self.assertRaises(ParseError):
            await transport.send(TransportRequest(url=URL))

    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = _transport(handler)

        with self.assertRaises(NetworkError) as cm:
            await transport.send(TransportRequest(url=URL))

        self.assertIn("connection refused", str(cm.exception))
        self.assertEqual(transport.get_metrics()["failed_requests"], 1)

    async def test_timeout(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json={"success": True})

        transport = _transport(handler)

        with self.assertRaises(RequestTimeoutError) as cm:
            await transport.send(TransportRequest(url=URL, timeout=0.05))

        self.assertIn("Request timeout after", str(cm.exception))

    async def test_metrics(self):
        transport = _transport(
            lambda request: httpx.Response(200, json={"success": True, "data": 1})
        )

        await transport.send(TransportRequest(url=URL))
        await transport.send(TransportRequest(url=URL))
        metrics = transport.get_metrics()

        self.assertEqual(metrics["total_requests"], 2)
        self.assertEqual(metrics["successful_requests"], 2)
        self.assertEqual(metrics["success_rate"], 100.0)

        transport.reset_metrics()
        self.assertEqual(transport.get_metrics()["total_requests"], 0)

    async def test_configure(self):
        transport = _transport(lambda request: httpx.Response(200))

        transport.configure(timeout=10.0, headers={"X-Test": "1"})

        self.assertEqual(transport.timeout, 10.0)
        self.assertEqual(transport.headers["X-Test"], "1")
        with self.assertRaises(ValueError):
            transport.configure(timeout=0)

    async def test_close_only_owned_client(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        )
        transport = HTTPTransport(client=client)

        await transport.close()

        self.assertFalse(client.is_closed)
        await client.aclose()


class TestValidateEnvelope(unittest.TestCase):
    """Test cases for envelope validation."""

    def test_valid(self):
        self.assertTrue(validate_envelope({"success": True, "data": {}}))
        self.assertTrue(validate_envelope({"success": False, "data": "bad"}))

    def test_invalid(self):
        self.assertFalse(validate_envelope("ok"))
        self.assertFalse(validate_envelope({"data": 1}))
        self.assertFalse(validate_envelope({"success": False}))

    def test_json_text_is_not_an_envelope(self):
        self.assertFalse(validate_envelope(json.dumps({"success": True})))


if __name__ == "__main__":
    unittest.main()
