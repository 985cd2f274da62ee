"""Tests for identity claim extraction."""

from __future__ import annotations

import base64
import json

import pytest

from papermail.auth.claims import IdentityClaims
from papermail.exceptions import AuthenticationError


def _jwt(payload: dict) -> str:
    def _segment(data: dict) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_segment({'alg': 'none'})}.{_segment(payload)}.signature"


def test_subject_and_email_from_standard_claims() -> None:
    claims = IdentityClaims.from_claims({"sub": "user-1", "email": "alice@example.com"})

    assert claims.subject == "user-1"
    assert claims.email == "alice@example.com"


def test_falls_back_to_oid_and_preferred_username() -> None:
    claims = IdentityClaims.from_claims(
        {"oid": "object-1", "preferred_username": "bob@contoso.onmicrosoft.com"}
    )

    assert claims.subject == "object-1"
    assert claims.email == "bob@contoso.onmicrosoft.com"


def test_non_email_username_is_ignored() -> None:
    claims = IdentityClaims.from_claims({"sub": "user-1", "preferred_username": "bob"})

    assert claims.email is None


def test_missing_subject_raises() -> None:
    with pytest.raises(AuthenticationError):
        IdentityClaims.from_claims({"email": "alice@example.com"})


def test_decodes_id_token_payload() -> None:
    token = _jwt({"sub": "user-1", "upn": "carol@example.org"})

    claims = IdentityClaims.from_id_token(token)

    assert claims.subject == "user-1"
    assert claims.email == "carol@example.org"


@pytest.mark.parametrize("token", ["", "one.two", "a.%%%.c", "a.bnVsbA.c"])
def test_malformed_id_token_raises(token) -> None:
    with pytest.raises(AuthenticationError):
        IdentityClaims.from_id_token(token)
