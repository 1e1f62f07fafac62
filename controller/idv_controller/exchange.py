"""Wallet credential request/response exchange with a bounded wait."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from .backend.models import Session
from .capability import Capabilities, CredentialEntryPoint
from .errors import (
    CredentialRequestError,
    ExchangeTimeoutError,
    PlatformError,
    UnsupportedPlatformError,
    UserCanceledError,
)

logger = logging.getLogger(__name__)

# DOMException name the platform uses when the user dismisses the wallet sheet.
USER_CANCEL_ERROR_NAME = "NotAllowedError"


class CredentialExchange:
    """Builds the request descriptor for a session and runs it through the page's entry point."""

    def __init__(self, capabilities: Capabilities, entry_point: CredentialEntryPoint, *, timeout_seconds: float) -> None:
        self._capabilities = capabilities
        self._entry_point = entry_point
        self._timeout_seconds = timeout_seconds

    @property
    def entry_point(self) -> CredentialEntryPoint:
        return self._entry_point

    async def request_credential(self, session: Session) -> Any:
        """Raw wallet response, or one of the exchange errors.

        On timeout the platform call is cancelled; the entry point is expected to
        turn that cancellation into an abort signal towards the platform.
        """
        if not self._capabilities.supports_wallet_launch:
            raise UnsupportedPlatformError("Digital Credentials API is not available in this browser.")

        descriptor = session.descriptor()
        logger.info(
            "[EXCHANGE] session=%s protocol=%s via %s (timeout=%.0fs)",
            session.session_id, descriptor.protocol, self._entry_point.kind.value, self._timeout_seconds,
        )
        try:
            return await asyncio.wait_for(self._entry_point.get(descriptor), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("[EXCHANGE] platform call did not settle in %.0fs - aborted", self._timeout_seconds)
            raise ExchangeTimeoutError(
                "The wallet request timed out.",
                log_message=f"credential request aborted after {self._timeout_seconds}s",
            ) from exc
        except PlatformError as exc:
            if exc.name == USER_CANCEL_ERROR_NAME:
                logger.info("[EXCHANGE] user dismissed the wallet (%s)", exc.message)
                raise UserCanceledError(exc.message, log_message=f"{exc.name}: {exc.message}") from exc
            logger.warning("[EXCHANGE] platform rejected the request: %s: %s", exc.name, exc.message)
            raise CredentialRequestError(exc.message, name=exc.name, log_message=f"{exc.name}: {exc.message}") from exc


__all__ = ["USER_CANCEL_ERROR_NAME", "CredentialExchange"]
