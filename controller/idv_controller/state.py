"""Shared flow state definitions for the wallet IDV controller."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class FlowPhase(str, enum.Enum):
    """
    Flow phases for one page:

    1. IDLE                   - Waiting for the user (or auto-resume)
    2. REQUESTING_SESSION     - Creating or resuming the backend session
    3. EXCHANGING_CREDENTIAL  - Wallet UI open, waiting on the platform (<=120s)
    4. REPORTING              - Posting the outcome to the backend
    5. DONE                   - Terminal; outcome is success/no_document/canceled/error
    6. SHOWING_QR             - No in-page wallet; waiting for another device to scan
    """
    IDLE = "idle"
    REQUESTING_SESSION = "requesting_session"
    EXCHANGING_CREDENTIAL = "exchanging_credential"
    REPORTING = "reporting"
    DONE = "done"
    SHOWING_QR = "showing_qr"


class FlowOutcome(str, enum.Enum):
    SUCCESS = "success"
    NO_DOCUMENT = "no_document"
    CANCELED = "canceled"
    ERROR = "error"


@dataclass
class FlowEvent:
    """Event payload distributed to the page over its WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: FlowPhase
    error: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "phase": self.phase.value,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class FlowResult:
    """Terminal result of one attempt, kept for the page lifetime."""

    outcome: FlowOutcome
    session_id: Optional[str]
    has_valid_id: bool
    message: str
    reported: bool = False


__all__ = ["FlowPhase", "FlowOutcome", "FlowEvent", "FlowResult"]
