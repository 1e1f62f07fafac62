"""Client bindings for the IDV backend session API."""
from .http_client import IdvHttpClient
from .models import RequestDescriptor, Session, SessionSnapshot, SessionStatus

__all__ = [
    "IdvHttpClient",
    "RequestDescriptor",
    "Session",
    "SessionSnapshot",
    "SessionStatus",
]
