"""Device capability detection and platform credential entry points."""
from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from .backend.models import RequestDescriptor
from .errors import InsecureContextError, UnsupportedPlatformError

logger = logging.getLogger(__name__)

_IPHONE_RE = re.compile(r"iPhone", re.IGNORECASE)
_SAFARI_RE = re.compile(r"Safari", re.IGNORECASE)
_NON_SAFARI_IOS_RE = re.compile(r"CriOS|FxiOS|EdgiOS", re.IGNORECASE)

# (method, options) -> wallet response. The page performs the real platform call.
PlatformInvoker = Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class DeviceSignals:
    """Raw signals the page reports once, at load time."""

    user_agent: str = ""
    has_identity_get: bool = False
    has_credentials_get: bool = False
    is_secure_context: bool = True


class EntryPointKind(str, enum.Enum):
    IDENTITY_GET = "identity.get"
    CREDENTIALS_GET = "credentials.get"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class Capabilities:
    supports_wallet_launch: bool
    is_iphone: bool
    is_safari: bool
    entry_point: EntryPointKind
    is_secure_context: bool


def detect_capabilities(signals: DeviceSignals) -> Capabilities:
    """Pure function of the load-time signals.

    Wallet launch is attempted on iPhone regardless of which entry point is
    exposed: a QR code scanned with the same phone is useless, so a missing
    API is reported as an error there instead of falling back to the QR.
    """
    ua = signals.user_agent or ""
    is_iphone = bool(_IPHONE_RE.search(ua))
    is_safari = bool(_SAFARI_RE.search(ua)) and not _NON_SAFARI_IOS_RE.search(ua)

    if signals.has_identity_get:
        kind = EntryPointKind.IDENTITY_GET
    elif signals.has_credentials_get:
        kind = EntryPointKind.CREDENTIALS_GET
    else:
        kind = EntryPointKind.UNSUPPORTED

    return Capabilities(
        supports_wallet_launch=is_iphone,
        is_iphone=is_iphone,
        is_safari=is_safari,
        entry_point=kind,
        is_secure_context=signals.is_secure_context,
    )


class CredentialEntryPoint(Protocol):
    kind: EntryPointKind

    async def get(self, descriptor: RequestDescriptor) -> Any:
        ...


class IdentityGetEntryPoint:
    """``navigator.identity.get({digital: {providers: [...]}})``."""

    kind = EntryPointKind.IDENTITY_GET

    def __init__(self, invoke: PlatformInvoker) -> None:
        self._invoke = invoke

    async def get(self, descriptor: RequestDescriptor) -> Any:
        options = {"digital": {"providers": [descriptor.as_provider()]}}
        return await self._invoke(self.kind.value, options)


class CredentialsGetEntryPoint:
    """``navigator.credentials.get({identity: {digital: {providers: [...]}}})``."""

    kind = EntryPointKind.CREDENTIALS_GET

    def __init__(self, invoke: PlatformInvoker) -> None:
        self._invoke = invoke

    async def get(self, descriptor: RequestDescriptor) -> Any:
        options = {"identity": {"digital": {"providers": [descriptor.as_provider()]}}}
        return await self._invoke(self.kind.value, options)


class UnsupportedEntryPoint:
    kind = EntryPointKind.UNSUPPORTED

    def __init__(self, is_secure_context: bool, *, is_safari: bool = True) -> None:
        self._is_secure_context = is_secure_context
        self._is_safari = is_safari

    async def get(self, descriptor: RequestDescriptor) -> Any:
        # Outside a secure context the API is hidden, so say that instead of "unsupported".
        if not self._is_secure_context:
            raise InsecureContextError(
                "Digital Credentials API requires HTTPS. Please use a secure connection."
            )
        if not self._is_safari:
            raise UnsupportedPlatformError(
                "Digital Credentials API is not available in this browser. Please open this page in Safari."
            )
        raise UnsupportedPlatformError(
            "Digital Credentials API is not available. Please use Safari on iPhone."
        )


def resolve_entry_point(capabilities: Capabilities, invoke: Optional[PlatformInvoker]) -> CredentialEntryPoint:
    """Pick the single entry point used for every attempt on this page."""
    if invoke is not None:
        if capabilities.entry_point is EntryPointKind.IDENTITY_GET:
            return IdentityGetEntryPoint(invoke)
        if capabilities.entry_point is EntryPointKind.CREDENTIALS_GET:
            return CredentialsGetEntryPoint(invoke)
    logger.debug(
        "No platform entry point (exposed=%s, secure=%s, invoker=%s)",
        capabilities.entry_point.value,
        capabilities.is_secure_context,
        invoke is not None,
    )
    return UnsupportedEntryPoint(capabilities.is_secure_context, is_safari=capabilities.is_safari)


__all__ = [
    "PlatformInvoker",
    "DeviceSignals",
    "EntryPointKind",
    "Capabilities",
    "detect_capabilities",
    "CredentialEntryPoint",
    "IdentityGetEntryPoint",
    "CredentialsGetEntryPoint",
    "UnsupportedEntryPoint",
    "resolve_entry_point",
]
