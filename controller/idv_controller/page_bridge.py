"""Forwards platform credential calls to the connected page and waits for its answer."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict

from .errors import PlatformError

logger = logging.getLogger(__name__)

OutboundSender = Callable[[Dict[str, Any]], Awaitable[None]]


class PageCredentialBridge:
    """Correlates ``credential_request`` messages with the page's replies.

    The page runs ``navigator.identity.get`` / ``navigator.credentials.get``
    itself; this side only waits. Cancelling the waiting task sends
    ``credential_abort`` so the page can fire its AbortController.
    """

    def __init__(self, send: OutboundSender) -> None:
        self._send = send
        self._ids = itertools.count(1)
        self._pending: Dict[str, asyncio.Future[Any]] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def invoke(self, method: str, options: Dict[str, Any]) -> Any:
        request_id = f"req-{next(self._ids)}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send(
                {"type": "credential_request", "requestId": request_id, "method": method, "options": options}
            )
            return await future
        except asyncio.CancelledError:
            logger.info("bridge: aborting %s (%s)", request_id, method)
            try:
                await self._send({"type": "credential_abort", "requestId": request_id})
            except Exception as e:
                logger.warning("bridge: unable to send abort for %s: %s", request_id, e)
            raise
        finally:
            self._pending.pop(request_id, None)

    def handle_message(self, message: Dict[str, Any]) -> bool:
        """Settle a pending request from a page reply. Returns False for unknown/stale ids."""
        request_id = message.get("requestId")
        future = self._pending.get(request_id) if isinstance(request_id, str) else None
        if future is None or future.done():
            logger.warning("bridge: reply for unknown request %r ignored", request_id)
            return False

        if message.get("type") == "credential_response":
            future.set_result(message.get("response"))
        else:
            name = str(message.get("name") or "Error")
            future.set_exception(PlatformError(name, str(message.get("message") or "")))
        return True

    def fail_all(self, reason: str = "Page disconnected") -> None:
        """Reject everything still waiting, e.g. when the page goes away."""
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(PlatformError("AbortError", reason))
            self._pending.pop(request_id, None)


__all__ = ["OutboundSender", "PageCredentialBridge"]
