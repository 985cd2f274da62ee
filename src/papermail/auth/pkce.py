"""PKCE (RFC 7636) helpers for the authorization code flow."""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256

VERIFIER_BYTES = 32  # 256 bits of entropy -> 43 characters
STATE_BYTES = 16


def base64url_encode(data: bytes) -> str:
    """Base64-URL encoding without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    return base64url_encode(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier))."""
    return base64url_encode(sha256(code_verifier.encode("ascii")).digest())


def generate_state() -> str:
    return base64url_encode(secrets.token_bytes(STATE_BYTES))


__all__ = [
    "base64url_encode",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
]
