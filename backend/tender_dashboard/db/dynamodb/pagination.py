"""Opaque `nextToken` cursors: the LastEvaluatedKey, JSON-encoded and sealed with AES-GCM."""

from __future__ import annotations

from typing import Any

import orjson

from ...services.token_crypto import decrypt_string, encrypt_string
from .errors import DdbValidation

CURSOR_VERSION = 1


def encode_next_token(last_evaluated_key: dict[str, Any] | None) -> str | None:
    if not last_evaluated_key:
        return None
    return encrypt_string(orjson.dumps({"v": CURSOR_VERSION, "lek": last_evaluated_key}).decode("utf-8"))


def decode_next_token(next_token: str | None) -> dict[str, Any] | None:
    if not next_token:
        return None
    raw = decrypt_string(next_token)
    try:
        payload = orjson.loads(raw) if raw else None
    except orjson.JSONDecodeError:
        payload = None
    if not isinstance(payload, dict) or payload.get("v") != CURSOR_VERSION:
        raise DdbValidation("Invalid nextToken", operation="Query")
    lek = payload.get("lek")
    if lek is not None and not isinstance(lek, dict):
        raise DdbValidation("Invalid nextToken", operation="Query")
    return lek or None
