"""Tests for the controller HTTP/WebSocket surface."""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from idv_controller import flow_manager, main
from idv_controller.backend.http_client import IdvHttpClient
from idv_controller.config import ExchangeSettings
from idv_controller.flow_manager import STATUS_CANCELED, STATUS_SUCCESS
from idv_controller.main import POLICY_VIOLATION, app

DESKTOP_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 Safari/605.1.15"
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 18_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.0 Mobile/15E148 Safari/604.1"
)
IPHONE_HELLO = {"type": "hello", "userAgent": IPHONE_UA, "hasIdentityGet": True}


def receive_until(ws, predicate):
    """Read page messages until one matches; returns it with everything seen."""
    seen = []
    while True:
        message = ws.receive_json()
        seen.append(message)
        if predicate(message):
            return message, seen


def wait_until(condition, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline, "condition not met in time"
        time.sleep(0.01)


def disconnect(ws) -> None:
    """Close from the page side and let the handler finish its cleanup."""
    ws.close()
    wait_until(lambda: not main.pages)


@pytest.fixture
def page_backend(monkeypatch, backend, settings):
    """Route every page's backend calls to the in-memory fake."""
    wired = settings.model_copy(update={"exchange": ExchangeSettings(timeout_seconds=5.0)})
    monkeypatch.setattr(main, "settings", wired)
    monkeypatch.setattr(
        flow_manager, "IdvHttpClient", lambda active: IdvHttpClient(active, transport=backend.transport())
    )
    return backend


class TestHealth:
    def test_healthz(self):
        with TestClient(app) as client:
            response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "pages": 0}


class TestLauncher:
    def test_run_serves_on_configured_interface(self, monkeypatch, settings):
        calls = []
        configured = settings.model_copy(update={"controller_host": "127.0.0.1", "controller_port": 5123})
        monkeypatch.setattr(main, "settings", configured)
        monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

        main.run()

        assert calls == [(app, {"host": "127.0.0.1", "port": 5123, "log_config": None})]


class TestPageSocket:
    def test_rejects_page_without_hello(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/page") as ws:
                ws.send_json({"type": "activate"})
                with pytest.raises(WebSocketDisconnect) as info:
                    ws.receive_json()
        assert info.value.code == POLICY_VIOLATION

    def test_desktop_page_with_prefilled_session_gets_qr(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/page") as ws:
                ws.send_json({"type": "hello", "userAgent": DESKTOP_UA, "prefilledSessionId": "abc"})
                messages = [ws.receive_json() for _ in range(3)]
                disconnect(ws)

        assert [m["type"] for m in messages] == ["state", "qr", "status"]
        assert messages[0]["phase"] == "showing_qr"
        assert "/api/idv/session/abc/qr?cacheBust=" in messages[1]["data"]["url"]
        assert messages[2]["data"]["isError"] is False


class TestPageCredentialRoundTrip:
    """Activation through /ws/page, with the page answering the platform call."""

    def test_wallet_document_is_reported_as_success(self, page_backend):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/page") as ws:
                ws.send_json(IPHONE_HELLO)
                ws.send_json({"type": "activate"})
                request, _ = receive_until(ws, lambda m: m["type"] == "credential_request")

                assert request["method"] == "identity.get"
                assert request["options"]["digital"]["providers"][0]["protocol"] == "openid4vp"

                ws.send_json({
                    "type": "credential_response",
                    "requestId": request["requestId"],
                    "response": {"documents": [{}]},
                })
                status, seen = receive_until(
                    ws, lambda m: m["type"] == "status" and m["data"]["message"] == STATUS_SUCCESS
                )
                disconnect(ws)

        assert status["data"]["isError"] is False
        done = next(m for m in seen if m["type"] == "state" and m["phase"] == "done")
        assert done["data"] == {"outcome": "success", "hasValidId": True, "sessionId": "sess-1"}
        assert page_backend.results == [
            {"sessionId": "sess-1", "hasValidId": True, "walletResponse": {"documents": [{}]}}
        ]

    def test_user_rejection_is_reported_as_canceled(self, page_backend):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/page") as ws:
                ws.send_json(IPHONE_HELLO)
                ws.send_json({"type": "activate"})
                request, _ = receive_until(ws, lambda m: m["type"] == "credential_request")
                ws.send_json({
                    "type": "credential_error",
                    "requestId": request["requestId"],
                    "name": "NotAllowedError",
                    "message": "The user dismissed the sheet",
                })
                status, _ = receive_until(
                    ws, lambda m: m["type"] == "status" and m["data"]["message"] == STATUS_CANCELED
                )
                disconnect(ws)

        assert status["data"]["isError"] is False
        assert len(page_backend.results) == 1
        assert page_backend.results[0]["hasValidId"] is False

    def test_disconnect_mid_request_reports_once(self, page_backend):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/page") as ws:
                ws.send_json(IPHONE_HELLO)
                ws.send_json({"type": "activate"})
                receive_until(ws, lambda m: m["type"] == "credential_request")
                disconnect(ws)

            assert client.get("/healthz").json()["pages"] == 0

        assert len(page_backend.calls("POST", "/result")) == 1
        assert page_backend.results == [
            {"sessionId": "sess-1", "hasValidId": False, "walletResponse": {"error": "Flow cancelled"}}
        ]
