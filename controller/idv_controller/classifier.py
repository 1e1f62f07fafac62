"""Decide whether a wallet response actually carries an identity document."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def is_present(value: Any) -> bool:
    """Wallet fields count as present unless null, false, empty string or zero."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (int, float)):
        return value != 0 and value == value
    return True


def _is_marked_invalid(item: Any) -> bool:
    if not isinstance(item, Mapping):
        return False
    if item.get("valid") is False or item.get("isValid") is False:
        return True
    status = item.get("status")
    return isinstance(status, str) and status.lower() == "invalid"


def classify(wallet_response: Any) -> bool:
    """First matching rule wins; anything that is not a populated mapping is False.

    Wallet generations answer with different success shapes, checked newest first:
    OpenID4VP ``vp_token`` / generic ``data``, legacy ``documents``, per-item
    ``items`` and finally the oldest single ``presentedMdoc`` field.
    """
    if wallet_response is None or not isinstance(wallet_response, Mapping):
        return False

    if is_present(wallet_response.get("vp_token")) or is_present(wallet_response.get("data")):
        return True

    documents = wallet_response.get("documents")
    if isinstance(documents, list) and documents:
        return True

    items = wallet_response.get("items")
    if isinstance(items, list):
        return any(not _is_marked_invalid(item) for item in items)

    return is_present(wallet_response.get("presentedMdoc"))


__all__ = ["classify", "is_present"]
