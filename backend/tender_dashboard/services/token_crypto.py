"""
Small secrets at rest (the Google Sheets API key, pagination cursors).

Format: "v1:<iv>:<tag>:<ciphertext>", each part base64, AES-256-GCM with a key
derived from TOKEN_ENC_KEY.
"""

from __future__ import annotations

import base64
import hashlib
import os
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..settings import settings

PREFIX = "v1"
_IV_BYTES = 12
_TAG_BYTES = 16
_DEV_KEY = "tender-dashboard-dev-key"


@lru_cache(maxsize=4)
def _aead(secret: str) -> AESGCM:
    return AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())


def _cipher() -> AESGCM:
    # Production refuses to boot without TOKEN_ENC_KEY (see Settings._require_in_production).
    return _aead(str(settings.token_enc_key or _DEV_KEY))


def _b64(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def encrypt_string(plain_text: Any) -> str | None:
    if plain_text is None:
        return None
    iv = os.urandom(_IV_BYTES)
    sealed = _cipher().encrypt(iv, str(plain_text).encode("utf-8"), None)
    body, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return ":".join([PREFIX, _b64(iv), _b64(tag), _b64(body)])


def decrypt_string(cipher_text: Any) -> str | None:
    """Plain text, or None for empty, malformed, or tampered input (or a rotated key)."""
    parts = str(cipher_text or "").split(":")
    if len(parts) != 4 or parts[0] != PREFIX:
        return None
    try:
        iv, tag, body = (base64.b64decode(p, validate=True) for p in parts[1:])
    except ValueError:
        return None
    if len(iv) != _IV_BYTES or len(tag) != _TAG_BYTES:
        return None
    try:
        return _cipher().decrypt(iv, body + tag, None).decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        return None
