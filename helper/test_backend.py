"""
Scriptable admin endpoint for pipeliner tests, served through
httpx.MockTransport.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx

ENDPOINT = "https://backend.test/wp-admin/admin-ajax.php"


class FakeBackend:
    """
    Records every posted form and answers per action.

    Responses registered for an action are used in order; the last one is
    repeated. Actions without responses succeed with ``{"action": ...}``.
    While ``gate`` is set to an unset event, requests wait on it.
    """

    def __init__(self):
        self.requests: List[Dict[str, str]] = []
        self.responses: Dict[str, List[Any]] = {}
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    def respond(self, action: str, *responses: Any) -> None:
        """
        Script the answers for an action.

        :param action: Full action name, for example ``las_save_settings``.
        :param responses: JSON bodies sent with status 200, or
            (status, text) tuples.
        """
        self.responses[action] = list(responses)

    def hold(self) -> asyncio.Event:
        """Make requests wait until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    @property
    def actions(self) -> List[str]:
        return [fields.get("action", "") for fields in self.requests]

    def count(self, action: str) -> int:
        return self.actions.count(action)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        fields = dict(parse_qsl(request.content.decode("utf-8")))
        self.requests.append(fields)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            return self._next_response(fields.get("action", ""))
        finally:
            self.in_flight -= 1

    def _next_response(self, action: str) -> httpx.Response:
        scripted = self.responses.get(action)
        if not scripted:
            return httpx.Response(
                200, json={"success": True, "data": {"action": action}}
            )

        response = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(response, tuple):
            status, text = response
            return httpx.Response(status, text=text)
        return httpx.Response(200, json=response)
