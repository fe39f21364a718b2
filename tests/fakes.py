"""In-process stand-ins for the channel providers."""

import json
import uuid
from typing import Any

import httpx

SERVICE_TOKEN = "test-service-token"

EMAIL_HOST = "api.resend.test"
WHATSAPP_HOST = "wa.test"
PUSH_HOST = "push.test"
TELEGRAM_HOST = "tg.test"


class FakeProviders:
    """Answers every provider call made through the test transport.

    Scripted outcomes (responses or exceptions) are consumed per host in
    order; once a host's script is empty the provider answers with its
    normal success response.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.scripts: dict[str, list[Any]] = {}
        self.telegram_updates: list[dict[str, Any]] = []

    def script(self, host: str, *outcomes: Any) -> None:
        self.scripts.setdefault(host, []).extend(outcomes)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.scripts.get(request.url.host)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self._success(request)

    def _success(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == WHATSAPP_HOST:
            return httpx.Response(201, json={"key": {"id": "3EB0C767D26A"}, "status": "PENDING"})
        if host == TELEGRAM_HOST:
            if request.url.path.endswith("/getUpdates"):
                updates, self.telegram_updates = self.telegram_updates, []
                return httpx.Response(200, json={"ok": True, "result": updates})
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})
        if host == EMAIL_HOST:
            return httpx.Response(200, json={"id": str(uuid.uuid4())})
        return httpx.Response(200, json={"ok": True})

    def sent_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def payloads(self, host: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.sent_to(host)]
