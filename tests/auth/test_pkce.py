"""Tests for PKCE helpers."""

from __future__ import annotations

import re

from papermail.auth.pkce import (
    base64url_encode,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)

URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


def test_verifier_is_43_url_safe_characters() -> None:
    verifier = generate_code_verifier()

    assert len(verifier) == 43
    assert URL_SAFE.match(verifier)
    assert "=" not in verifier


def test_verifiers_are_unique() -> None:
    assert len({generate_code_verifier() for _ in range(50)}) == 50


def test_challenge_matches_rfc7636_example() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_state_is_url_safe_and_unpadded() -> None:
    state = generate_state()

    assert URL_SAFE.match(state)
    assert not state.endswith("=")
    assert state != generate_state()


def test_base64url_encode_strips_padding() -> None:
    assert base64url_encode(b"\xfb\xff") == "-_8"
