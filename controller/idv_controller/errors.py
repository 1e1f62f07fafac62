"""Error taxonomy for the wallet verification flow."""
from __future__ import annotations

from typing import Optional


class IdvError(RuntimeError):
    """Base for every flow failure; ``user_message`` is safe to put on screen."""

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message


# Session acquisition: surfaced to the page, flow stops, nothing is reported.

class SessionCreationError(IdvError):
    pass


class SessionNotFoundError(IdvError):
    pass


class InvalidSessionPayloadError(IdvError):
    """Backend answered 2xx but the session JSON is unusable (e.g. untagged request payload)."""


# Credential exchange: always followed by exactly one result report.

class UnsupportedPlatformError(IdvError):
    pass


class InsecureContextError(IdvError):
    pass


class UserCanceledError(IdvError):
    """The user dismissed the wallet UI."""


class ExchangeTimeoutError(IdvError):
    """The platform call did not settle in time and was aborted."""


class CredentialRequestError(IdvError):
    """Any other platform rejection."""

    def __init__(self, user_message: str, *, name: Optional[str] = None, log_message: Optional[str] = None) -> None:
        super().__init__(user_message, log_message=log_message)
        self.name = name


# Reporting: never leaves the reporter.

class ReportingError(IdvError):
    pass


class PlatformError(Exception):
    """Rejection raised by a platform entry point, named like the DOMException the page saw."""

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(message or name)
        self.name = name
        self.message = message or name


__all__ = [
    "IdvError",
    "SessionCreationError",
    "SessionNotFoundError",
    "InvalidSessionPayloadError",
    "UnsupportedPlatformError",
    "InsecureContextError",
    "UserCanceledError",
    "ExchangeTimeoutError",
    "CredentialRequestError",
    "ReportingError",
    "PlatformError",
]
