"""Best-effort result reporting back to the session owner."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .backend.http_client import IdvHttpClient
from .classifier import is_present
from .errors import ReportingError

logger = logging.getLogger(__name__)

SERIALIZATION_ERROR_STUB: Dict[str, Any] = {"error": "Unable to serialize wallet payload"}


@dataclass(frozen=True)
class SanitizedPayload:
    """Either a JSON-safe deep copy of the wallet payload or the fixed fallback stub."""

    value: Any
    fallback: bool = False


def sanitize_payload(payload: Any) -> SanitizedPayload:
    """Deep-copy through a strict JSON round-trip; never raises. Absent payloads become null."""
    if not is_present(payload):
        return SanitizedPayload(None)
    try:
        return SanitizedPayload(json.loads(json.dumps(payload, allow_nan=False)))
    except (TypeError, ValueError, RecursionError) as exc:
        logger.debug("Wallet payload not serializable (%s); using stub", exc)
        return SanitizedPayload(dict(SERIALIZATION_ERROR_STUB), fallback=True)


def build_report_body(has_valid_id: bool, raw_payload: Any) -> Dict[str, Any]:
    return {
        "hasValidId": bool(has_valid_id),
        "walletResponse": sanitize_payload(raw_payload).value,
    }


class ResultReporter:
    """Posts ``{hasValidId, walletResponse}``; failures are logged and swallowed."""

    def __init__(self, http_client: IdvHttpClient) -> None:
        self._http_client = http_client

    async def report(self, session_id: str, has_valid_id: bool, raw_payload: Optional[Any]) -> bool:
        """Returns whether the backend accepted the report. Never raises."""
        try:
            body = build_report_body(has_valid_id, raw_payload)
            status = await self._http_client.post_result(session_id, body)
        except ReportingError as e:
            logger.warning("Unable to report result for %s: %s", session_id, e)
            return False
        except Exception as e:
            logger.exception("Unexpected error reporting result for %s: %s", session_id, e)
            return False
        logger.info("report: session %s hasValidId=%s (HTTP %d)", session_id, body["hasValidId"], status)
        return True


__all__ = [
    "SERIALIZATION_ERROR_STUB",
    "SanitizedPayload",
    "sanitize_payload",
    "build_report_body",
    "ResultReporter",
]
