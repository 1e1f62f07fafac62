"""Tests for session parsing and the protocol-tagged request payload."""

import pytest
from pydantic import ValidationError

from idv_controller.backend.models import (
    GenericRequestPayload,
    MdocRequestPayload,
    Session,
    SessionSnapshot,
    SessionStatus,
)

MDOC_PAYLOAD = {
    "protocol": "mdoc",
    "docType": "org.iso.18013.5.1.mDL",
    "mediator": "https://identity.apple.com/digital-credentials",
    "namespaces": [
        {"namespace": "org.iso.18013.5.1", "dataElements": ["family_name", "given_name", "birth_date"]}
    ],
    "challenge": "q2V4Y2hhbGxlbmdl",
    "relyingPartyId": "localhost",
    "sessionToken": "sess-1",
}


class TestRequestPayloadUnion:
    """The ``protocol`` tag, not field presence, picks the payload variant."""

    def test_mdoc_tag_selects_legacy_body(self):
        session = Session.model_validate({"sessionId": "sess-1", "payload": MDOC_PAYLOAD})

        assert isinstance(session.request_payload, MdocRequestPayload)
        descriptor = session.descriptor()
        assert descriptor.protocol == "mdoc"
        assert descriptor.request == {k: v for k, v in MDOC_PAYLOAD.items() if k != "protocol"}

    def test_other_tags_pass_request_through(self):
        request = {"client_id": "x", "nonce": "n", "nested": {"a": [1, 2]}}
        session = Session.model_validate(
            {"sessionId": "sess-2", "request": {"protocol": "openid4vp", "request": request}}
        )

        assert isinstance(session.request_payload, GenericRequestPayload)
        assert session.descriptor().as_provider() == {"protocol": "openid4vp", "request": request}

    def test_generic_request_may_be_a_string(self):
        session = Session.model_validate(
            {"sessionId": "s", "payload": {"protocol": "openid4vp-v1-signed", "request": "eyJhbGciOi"}}
        )
        assert session.descriptor().request == "eyJhbGciOi"

    def test_mdoc_extra_fields_are_kept(self):
        payload = dict(MDOC_PAYLOAD, readerAuth="abc")
        session = Session.model_validate({"sessionId": "s", "payload": payload})
        assert session.descriptor().request["readerAuth"] == "abc"

    def test_untagged_payload_is_rejected(self):
        with pytest.raises(ValidationError):
            Session.model_validate({"sessionId": "s", "payload": {"request": {"nonce": "n"}}})

    def test_missing_payload_is_rejected(self):
        with pytest.raises(ValidationError):
            Session.model_validate({"sessionId": "s"})

    def test_descriptor_is_fresh_per_call(self):
        session = Session.model_validate({"sessionId": "s", "payload": MDOC_PAYLOAD})
        first = session.descriptor()
        first.request["challenge"] = "tampered"
        assert session.descriptor().request["challenge"] == MDOC_PAYLOAD["challenge"]


class TestSessionSnapshot:
    def test_terminal_statuses(self):
        pending = SessionSnapshot.model_validate({"sessionId": "s", "status": "PENDING"})
        done = SessionSnapshot.model_validate(
            {"sessionId": "s", "status": "SUCCESS", "validGovernmentId": True, "createdAt": 1700000000.25}
        )

        assert pending.is_terminal is False
        assert done.is_terminal is True
        assert done.status is SessionStatus.SUCCESS
        assert done.valid_government_id is True
