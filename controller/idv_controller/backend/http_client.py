"""HTTP client for the IDV backend session endpoints."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, urlencode

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import (
    InvalidSessionPayloadError,
    ReportingError,
    SessionCreationError,
    SessionNotFoundError,
)
from .models import Session, SessionSnapshot

logger = logging.getLogger(__name__)

SESSION_PATH = "/api/idv/session"


class IdvHttpClient:
    """Thin wrapper around the backend session REST API."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_api_url,
            timeout=self.settings.backend_timeout_seconds,
            transport=transport,
        )

    async def create_session(self) -> Session:
        """POST a new session; any non-2xx or transport failure is a hard failure."""
        try:
            logger.info("backend.create_session: requesting new session")
            response = await self._client.post(SESSION_PATH)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error("backend.create_session: request timeout")
            raise SessionCreationError("Failed to request a new session", log_message="create_session timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error("backend.create_session: HTTP %d - %s", e.response.status_code, e.response.text)
            raise SessionCreationError(
                "Failed to request a new session",
                log_message=f"create_session HTTP {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            logger.error("backend.create_session: network error - %s", e)
            raise SessionCreationError("Failed to request a new session", log_message=str(e)) from e
        except ValueError as e:
            logger.error("backend.create_session: response is not JSON - %s", e)
            raise InvalidSessionPayloadError("The verification service sent an invalid session") from e
        return self._parse_session(data, "create_session")

    async def resume_session(self, session_id: str) -> Session:
        """GET an existing session; 404 (and any other failure) means it cannot be resumed."""
        try:
            logger.info("backend.resume_session: fetching session %s", session_id)
            response = await self._client.get(self._session_path(session_id))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                logger.warning("backend.resume_session: session %s not found", session_id)
            else:
                logger.error("backend.resume_session: HTTP %d - %s", status, e.response.text)
            raise SessionNotFoundError("Session not found", log_message=f"resume_session HTTP {status}") from e
        except httpx.HTTPError as e:
            logger.error("backend.resume_session: network error - %s", e)
            raise SessionNotFoundError("Session not found", log_message=str(e)) from e
        except ValueError as e:
            logger.error("backend.resume_session: response is not JSON - %s", e)
            raise InvalidSessionPayloadError("The verification service sent an invalid session") from e
        return self._parse_session(data, "resume_session")

    async def get_status(self, session_id: str) -> Optional[SessionSnapshot]:
        """Session snapshot; None on a transient failure, SessionNotFoundError once it is gone."""
        try:
            response = await self._client.get(f"{self._session_path(session_id)}/status")
            if response.status_code == 404:
                raise SessionNotFoundError("Session not found", log_message=f"status {session_id}: HTTP 404")
            response.raise_for_status()
            return SessionSnapshot.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.warning("backend.get_status: HTTP %d for %s", e.response.status_code, session_id)
        except httpx.HTTPError as e:
            logger.warning("backend.get_status: network error - %s", e)
        except ValueError as e:
            logger.warning("backend.get_status: unusable snapshot - %s", e)
        return None

    async def post_result(self, session_id: str, body: Dict[str, Any]) -> int:
        """POST the result body; any failure comes back as ReportingError."""
        try:
            response = await self._client.post(f"{self._session_path(session_id)}/result", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ReportingError(
                "Unable to report result", log_message=f"HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ReportingError("Unable to report result", log_message=f"{type(e).__name__}: {e}") from e
        return response.status_code

    def qr_url(self, session_id: str) -> str:
        """Image URL for the QR display, cache-busted with the current time in ms."""
        query = urlencode({"cacheBust": int(self._clock() * 1000)})
        return f"{self.settings.backend_api_url}{self._session_path(session_id)}/qr?{query}"

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

    @staticmethod
    def _session_path(session_id: str) -> str:
        return f"{SESSION_PATH}/{quote(session_id, safe='')}"

    @staticmethod
    def _parse_session(data: Any, operation: str) -> Session:
        try:
            session = Session.model_validate(data)
        except ValidationError as e:
            logger.error("backend.%s: unusable session payload - %s", operation, e)
            raise InvalidSessionPayloadError(
                "The verification service sent an invalid session",
                log_message=f"{operation}: {e.error_count()} validation error(s)",
            ) from e
        logger.info("backend.%s: session %s (protocol=%s)", operation, session.session_id,
                    session.request_payload.protocol)
        return session
