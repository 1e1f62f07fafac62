"""
Shared pytest fixtures for the IDV controller tests.

Provides:
- Settings with short timeouts and no background polling
- An in-memory fake of the backend session API (httpx.MockTransport)
- Fake platform wallets and device signals
"""

import asyncio
import json
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from idv_controller.backend.http_client import IdvHttpClient
from idv_controller.capability import DeviceSignals
from idv_controller.config import ExchangeSettings, QrSettings, Settings
from idv_controller.flow_manager import FlowManager

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 18_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)

BACKEND_URL = "http://idv.test"

OPENID4VP_PAYLOAD = {
    "protocol": "openid4vp",
    "request": {"client_id": "web-origin:https://idv.test", "nonce": "n-123", "dcql_query": {"credentials": []}},
}


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "backend_api_url": BACKEND_URL,
        "heartbeat_seconds": 0,
        "ui_event_queue_size": 64,
        "exchange": ExchangeSettings(timeout_seconds=1.0),
        "qr": QrSettings(watch_enabled=False),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeBackend:
    """Minimal stand-in for /api/idv/session*."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.statuses: Dict[str, List[Dict[str, Any]]] = {}
        self.requests: List[httpx.Request] = []
        self.results: List[Dict[str, Any]] = []
        self.create_status = 200
        self.result_status = 204
        self.payload: Dict[str, Any] = dict(OPENID4VP_PAYLOAD)
        self._counter = 0

    def add_session(self, session_id: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {
            "sessionId": session_id,
            "qrContent": f"{BACKEND_URL}/?session={session_id}",
            "payload": payload or self.payload,
        }
        self.sessions[session_id] = body
        return body

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/api/idv/session":
            if self.create_status >= 400:
                return httpx.Response(self.create_status, text="nope")
            self._counter += 1
            return httpx.Response(200, json=self.add_session(f"sess-{self._counter}"))

        match = re.fullmatch(r"/api/idv/session/([^/]+)(/result|/status)?", path)
        if not match:
            return httpx.Response(404)
        session_id, suffix = match.group(1), match.group(2)
        if session_id not in self.sessions:
            return httpx.Response(404)

        if suffix == "/result" and request.method == "POST":
            self.results.append({"sessionId": session_id, **json.loads(request.content)})
            return httpx.Response(self.result_status)
        if suffix == "/status":
            queue = self.statuses.get(session_id) or [{"sessionId": session_id, "status": "PENDING"}]
            snapshot = queue.pop(0) if len(queue) > 1 else queue[0]
            return httpx.Response(200, json=snapshot)
        return httpx.Response(200, json=self.sessions[session_id])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path_suffix: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(path_suffix)]


class FakeWallet:
    """Platform invoker that answers, rejects, or never settles."""

    def __init__(self, response: Any = None, *, error: Optional[BaseException] = None, hang: bool = False) -> None:
        self.response = response
        self.error = error
        self.hang = hang
        self.calls: List[tuple] = []
        self.cancelled = False

    async def __call__(self, method: str, options: Dict[str, Any]) -> Any:
        self.calls.append((method, options))
        if self.hang:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def iphone_signals() -> DeviceSignals:
    return DeviceSignals(user_agent=IPHONE_UA, has_identity_get=True)


@pytest.fixture
def desktop_signals() -> DeviceSignals:
    return DeviceSignals(user_agent=DESKTOP_UA, has_credentials_get=True)


@pytest.fixture
def make_manager(backend: FakeBackend, settings: Settings) -> Callable[..., FlowManager]:
    def factory(
        signals: DeviceSignals,
        wallet: Optional[FakeWallet] = None,
        *,
        prefilled_session_id: Optional[str] = None,
        settings_override: Optional[Settings] = None,
    ) -> FlowManager:
        active = settings_override or settings
        client = IdvHttpClient(active, transport=backend.transport(), clock=lambda: 1700000000.5)
        return FlowManager(
            signals=signals,
            settings=active,
            invoke=wallet,
            prefilled_session_id=prefilled_session_id,
            http_client=client,
        )

    return factory


@pytest.fixture
def fake_wallet() -> type:
    return FakeWallet
