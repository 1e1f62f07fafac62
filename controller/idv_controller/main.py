"""FastAPI entry-point for the wallet IDV controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Literal, Optional, Set

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .capability import DeviceSignals
from .config import Settings, get_settings
from .flow_manager import FlowManager
from .logging_config import configure_logging
from .page_bridge import PageCredentialBridge
from .state import FlowEvent

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = FastAPI(title="wallet-idv-controller", version="0.1.0")

# One FlowManager per connected page.
pages: Set[FlowManager] = set()

POLICY_VIOLATION = 1008


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
    return PlainTextResponse(
        f"Internal server error: {str(exc)}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors gracefully."""
    logger.warning(f"Validation error in {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)}
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class PageHello(BaseModel):
    """First message of every page connection: load-time signals and an optional session id."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["hello"]
    user_agent: str = Field("", alias="userAgent")
    has_identity_get: bool = Field(False, alias="hasIdentityGet")
    has_credentials_get: bool = Field(False, alias="hasCredentialsGet")
    is_secure_context: bool = Field(True, alias="isSecureContext")
    prefilled_session_id: Optional[str] = Field(None, alias="prefilledSessionId")

    def signals(self) -> DeviceSignals:
        return DeviceSignals(
            user_agent=self.user_agent,
            has_identity_get=self.has_identity_get,
            has_credentials_get=self.has_credentials_get,
            is_secure_context=self.is_secure_context,
        )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    for manager in list(pages):
        try:
            await manager.stop()
        except Exception as e:
            logger.exception(f"Error stopping page flow: {e}")
    pages.clear()
    logger.info("Application shutdown complete")


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok", "pages": len(pages)})


async def _forward_events(queue: asyncio.Queue[FlowEvent], outbound: asyncio.Queue[Dict[str, Any]]) -> None:
    while True:
        event = await queue.get()
        await outbound.put(event.to_message())


async def _pump_outbound(ws: WebSocket, outbound: asyncio.Queue[Dict[str, Any]]) -> None:
    """Single writer for the socket; flow events and bridge requests share it."""
    while True:
        message = await outbound.get()
        try:
            await ws.send_json(message)
        except Exception as e:
            logger.debug(f"WebSocket send failed (page disconnected): {e}")
            return


@app.websocket("/ws/page")
async def page_socket(ws: WebSocket) -> None:
    await ws.accept()
    try:
        hello = PageHello.model_validate(await ws.receive_json())
    except WebSocketDisconnect:
        return
    except (ValidationError, ValueError) as e:
        logger.warning(f"Rejecting page without a valid hello: {e}")
        await ws.close(code=POLICY_VIOLATION)
        return

    outbound: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
    bridge = PageCredentialBridge(outbound.put)
    manager = FlowManager(
        signals=hello.signals(),
        settings=settings,
        invoke=bridge.invoke,
        prefilled_session_id=hello.prefilled_session_id,
    )
    events = manager.register_ui()
    writer = asyncio.create_task(_pump_outbound(ws, outbound), name="idv-page-writer")
    forwarder = asyncio.create_task(_forward_events(events, outbound), name="idv-page-events")
    pages.add(manager)

    try:
        await manager.start()
        while True:
            message = await ws.receive_json()
            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "activate":
                manager.activate()
            elif kind in ("credential_response", "credential_error"):
                bridge.handle_message(message)
            else:
                logger.warning(f"Ignoring unknown page message type {kind!r}")
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass  # Clean shutdown
    except Exception as e:
        logger.error(f"Unexpected error in page websocket: {e}")
    finally:
        # Stop first so an in-flight exchange is reported before its request is failed.
        await manager.stop()
        bridge.fail_all()
        manager.unregister_ui(events)
        pages.discard(manager)
        for task in (forwarder, writer):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            await ws.close()
        except Exception:
            pass


def run() -> None:
    """Serve the controller on the configured interface."""
    uvicorn.run(app, host=settings.controller_host, port=settings.controller_port, log_config=None)


if __name__ == "__main__":
    run()
