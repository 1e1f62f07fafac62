"""Wire models for the IDV backend session API."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Discriminator, Field, Tag

MDOC_PROTOCOL = "mdoc"


@dataclass(frozen=True)
class RequestDescriptor:
    """What the platform credential API receives: a protocol name plus an opaque body."""

    protocol: str
    request: Any

    def as_provider(self) -> Dict[str, Any]:
        return {"protocol": self.protocol, "request": self.request}


class GenericRequestPayload(BaseModel):
    """Current backends: ``{protocol, request}`` with the request passed through untouched."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    protocol: str
    request: Any

    def to_descriptor(self) -> RequestDescriptor:
        return RequestDescriptor(protocol=self.protocol, request=self.request)


class RequestedNamespace(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    namespace: str
    data_elements: List[str] = Field(default_factory=list, alias="dataElements")


class MdocRequestPayload(BaseModel):
    """Legacy backends: a flat ISO 18013-5 style body tagged ``protocol: mdoc``.

    Every field is optional and unknown fields are kept; the body is forwarded
    to the wallet as-is (minus the tag), the controller never validates it.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    protocol: Literal["mdoc"]
    doc_type: Optional[str] = Field(None, alias="docType")
    mediator: Optional[str] = None
    namespaces: List[RequestedNamespace] = Field(default_factory=list)
    challenge: Optional[str] = None
    relying_party_id: Optional[str] = Field(None, alias="relyingPartyId")
    session_token: Optional[str] = Field(None, alias="sessionToken")

    def to_descriptor(self) -> RequestDescriptor:
        body = self.model_dump(by_alias=True, exclude={"protocol"}, exclude_none=True)
        return RequestDescriptor(protocol=self.protocol, request=body)


def _payload_tag(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        protocol = value.get("protocol")
    else:
        protocol = getattr(value, "protocol", None)
    if not protocol or not isinstance(protocol, str):
        return None
    return "mdoc" if protocol == MDOC_PROTOCOL else "generic"


RequestPayload = Annotated[
    Union[
        Annotated[MdocRequestPayload, Tag("mdoc")],
        Annotated[GenericRequestPayload, Tag("generic")],
    ],
    Discriminator(_payload_tag),
]


class Session(BaseModel):
    """Backend session as returned by create/resume; never mutated client-side."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str = Field(validation_alias=AliasChoices("sessionId", "session_id"))
    qr_content: Optional[str] = Field(None, validation_alias=AliasChoices("qrContent", "qr_content"))
    request_payload: RequestPayload = Field(
        validation_alias=AliasChoices("payload", "request", "request_payload"),
    )

    def descriptor(self) -> RequestDescriptor:
        """Fresh descriptor for one exchange attempt."""
        return self.request_payload.to_descriptor()


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str = Field(validation_alias=AliasChoices("sessionId", "session_id"))
    status: SessionStatus = SessionStatus.PENDING
    valid_government_id: Optional[bool] = Field(
        None, validation_alias=AliasChoices("validGovernmentId", "valid_government_id")
    )
    created_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    qr_content: Optional[str] = Field(None, validation_alias=AliasChoices("qrContent", "qr_content"))
    relying_party_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("relyingPartyId", "relying_party_id")
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {SessionStatus.SUCCESS, SessionStatus.FAILURE}


__all__ = [
    "MDOC_PROTOCOL",
    "RequestDescriptor",
    "GenericRequestPayload",
    "MdocRequestPayload",
    "RequestedNamespace",
    "RequestPayload",
    "Session",
    "SessionStatus",
    "SessionSnapshot",
]
