"""Tests for the OAuth flow handler."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, List
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from papermail.auth.audit import AuditLogger
from papermail.auth.models import OAuthTokens
from papermail.auth.oauth import OAuthFlowHandler
from papermail.auth.pkce import generate_code_challenge
from papermail.auth.protector import ACCESS_TOKEN_PURPOSE, REFRESH_TOKEN_PURPOSE
from papermail.auth.state import CredentialState
from papermail.exceptions import AuthenticationError, InvalidStateTransitionError


class _RecordingHandler(OAuthFlowHandler):
    """Handler whose token endpoint is a canned response."""

    def __init__(self, *args, response: Dict[str, Any], **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.response = response
        self.calls: List[Dict[str, Any]] = []

    def _post(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:  # type: ignore[override]
        self.calls.append({"url": url, "data": dict(data)})
        return self.response


def _handler(settings, store, protector, clock, response=None, audit=None) -> _RecordingHandler:
    return _RecordingHandler(
        settings=settings.oauth,
        store=store,
        protector=protector,
        security=settings.security,
        audit_logger=audit,
        _now=clock,
        response=response or {},
    )


def _id_token(claims: dict) -> str:
    body = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"e30.{body}.sig"


def test_authorization_url_parameters(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)

    request = handler.build_authorization_url()

    parsed = urlparse(request.url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://login.example.com/authorize"
    params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    assert params == {
        "client_id": "client-id",
        "redirect_uri": "https://app.example.com/oauth/callback",
        "response_type": "code",
        "scope": "openid email offline_access",
        "code_challenge": generate_code_challenge(request.code_verifier),
        "code_challenge_method": "S256",
        "state": request.state,
    }
    assert "scope=openid+email+offline_access" in parsed.query
    assert len(request.code_verifier) == 43


def test_each_authorization_request_is_fresh(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)

    first = handler.build_authorization_url()
    second = handler.build_authorization_url()

    assert first.state != second.state
    assert first.code_verifier != second.code_verifier


def test_exchange_code_posts_form_fields(settings, account_store, protector, clock) -> None:
    handler = _handler(
        settings,
        account_store,
        protector,
        clock,
        response={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": "openid email",
            "token_type": "Bearer",
        },
    )

    tokens = handler.exchange_code("auth-code", "verifier-123")

    assert tokens.access_token == "access-1"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.scope == ["openid", "email"]
    assert handler.calls == [
        {
            "url": "https://login.example.com/token",
            "data": {
                "client_id": "client-id",
                "client_secret": "client-secret",
                "grant_type": "authorization_code",
                "code": "auth-code",
                "code_verifier": "verifier-123",
                "redirect_uri": "https://app.example.com/oauth/callback",
            },
        }
    ]
    assert "access-1" not in repr(tokens)


def test_exchange_without_access_token_is_rejected(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock, response={"error": "invalid_grant"})

    with pytest.raises(AuthenticationError):
        handler.exchange_code("auth-code", "verifier")


@pytest.mark.parametrize(
    "response",
    [
        {"access_token": "a", "expires_in": "3600s"},
        {"access_token": "a", "expires_in": -5},
        {"access_token": "a", "expires_in": 60, "scope": 7},
    ],
)
def test_malformed_token_response_is_an_authentication_error(
    settings, account_store, protector, clock, response
) -> None:
    handler = _handler(settings, account_store, protector, clock, response=response)

    with pytest.raises(AuthenticationError, match="malformed"):
        handler.exchange_code("auth-code", "verifier")
    with pytest.raises(AuthenticationError, match="malformed"):
        handler.refresh("refresh-1")


def test_refresh_preserves_refresh_token_when_omitted(
    settings, account_store, protector, clock
) -> None:
    handler = _handler(
        settings, account_store, protector, clock, response={"access_token": "access-2", "expires_in": 3600}
    )

    tokens = handler.refresh("refresh-1")

    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-1"
    assert handler.calls[0]["data"] == {
        "client_id": "client-id",
        "client_secret": "client-secret",
        "grant_type": "refresh_token",
        "refresh_token": "refresh-1",
    }


def test_refresh_takes_rotated_refresh_token(settings, account_store, protector, clock) -> None:
    handler = _handler(
        settings,
        account_store,
        protector,
        clock,
        response={"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600},
    )

    assert handler.refresh("refresh-1").refresh_token == "refresh-2"


def test_store_tokens_creates_encrypted_account(settings, account_store, protector, clock, tmp_path) -> None:
    audit = AuditLogger(tmp_path / "audit")
    handler = _handler(settings, account_store, protector, clock, audit=audit)
    tokens = OAuthTokens(access_token="access-1", refresh_token="refresh-1", expires_in=3600, scope=["openid"])

    account = handler.store_tokens("u1", tokens, email_address="u1@example.com")

    assert account.provider_id == "microsoft"
    assert account.scopes == ["openid"]
    assert account.access_token != "access-1"
    assert protector.unprotect(ACCESS_TOKEN_PURPOSE, account.access_token) == "access-1"
    assert protector.unprotect(REFRESH_TOKEN_PURPOSE, account.refresh_token) == "refresh-1"
    raw = account_store.path.read_text()
    assert "access-1" not in raw and "refresh-1" not in raw
    assert [item.to_state for item in handler.state_machine.history("u1")] == [
        CredentialState.PENDING_AUTHORIZATION,
        CredentialState.AUTHORIZED,
    ]
    (event,) = list(audit.iter_events())
    assert event["action"] == "credential_create"
    assert "u1@example.com" not in json.dumps(event)


def test_store_tokens_reads_mailbox_from_id_token(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)
    tokens = OAuthTokens(
        access_token="access-1",
        expires_in=3600,
        id_token=_id_token({"sub": "u1", "email": "claims@example.com"}),
    )

    account = handler.store_tokens("u1", tokens)

    assert account.email_address == "claims@example.com"


def test_store_tokens_without_mailbox_fails(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)

    with pytest.raises(AuthenticationError):
        handler.store_tokens("u1", OAuthTokens(access_token="access-1", expires_in=3600))
    assert account_store.find_account_by_user("u1") is None


def test_store_after_refresh_keeps_existing_refresh_token(
    settings, account_store, protector, clock
) -> None:
    handler = _handler(settings, account_store, protector, clock)
    first = handler.store_tokens(
        "u1",
        OAuthTokens(access_token="access-1", refresh_token="refresh-1", expires_in=120, scope=["openid"]),
        email_address="u1@example.com",
    )
    clock.advance(600)

    second = handler.store_tokens("u1", OAuthTokens(access_token="access-2", expires_in=3600))

    assert second.id == first.id
    assert second.scopes == ["openid"]
    assert protector.unprotect(REFRESH_TOKEN_PURPOSE, second.refresh_token) == "refresh-1"
    assert protector.unprotect(ACCESS_TOKEN_PURPOSE, second.access_token) == "access-2"
    assert [item.to_state for item in handler.state_machine.history("u1")][-2:] == [
        CredentialState.REFRESHING,
        CredentialState.AUTHORIZED,
    ]


def test_revoke_is_idempotent(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)
    handler.store_tokens(
        "u1",
        OAuthTokens(access_token="access-1", refresh_token="refresh-1", expires_in=3600),
        email_address="u1@example.com",
    )

    handler.revoke_tokens("u1")
    once = account_store.find_account_by_user("u1")
    handler.revoke_tokens("u1")
    twice = account_store.find_account_by_user("u1")

    assert once == twice
    assert once.is_active is False
    assert once.access_token == once.refresh_token == ""
    assert once.expires_at is None


def test_revoke_unknown_user_is_noop(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)

    handler.revoke_tokens("nobody")

    assert account_store.list_accounts() == []


def test_reauthorize_after_revoke(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)
    tokens = OAuthTokens(access_token="access-1", expires_in=3600)
    handler.store_tokens("u1", tokens, email_address="u1@example.com")
    handler.revoke_tokens("u1")

    account = handler.store_tokens("u1", tokens)

    assert account.is_active is True


def test_blank_user_id_rejected(settings, account_store, protector, clock) -> None:
    handler = _handler(settings, account_store, protector, clock)

    with pytest.raises(ValueError):
        handler.store_tokens("", OAuthTokens(access_token="a", expires_in=1))
    with pytest.raises(ValueError):
        handler.revoke_tokens(" ")


def test_invalid_transition_is_not_an_authentication_error() -> None:
    assert issubclass(InvalidStateTransitionError, ValueError)
    assert not issubclass(InvalidStateTransitionError, AuthenticationError)


@patch("papermail.auth.oauth.requests.post")
def test_post_rejects_error_status(mock_post, settings, account_store, protector, clock) -> None:
    mock_post.return_value = Mock(status_code=400, text='{"error":"invalid_grant"}')
    handler = OAuthFlowHandler(settings=settings.oauth, store=account_store, protector=protector, _now=clock)

    with pytest.raises(AuthenticationError):
        handler.refresh("refresh-1")
    _, kwargs = mock_post.call_args
    assert kwargs["timeout"] == settings.oauth.request_timeout_seconds
    assert kwargs["data"]["grant_type"] == "refresh_token"


@patch("papermail.auth.oauth.requests.post")
def test_post_wraps_network_errors(mock_post, settings, account_store, protector, clock) -> None:
    mock_post.side_effect = requests.ConnectionError("boom")
    handler = OAuthFlowHandler(settings=settings.oauth, store=account_store, protector=protector, _now=clock)

    with pytest.raises(AuthenticationError):
        handler.exchange_code("code", "verifier")


@patch("papermail.auth.oauth.requests.post")
def test_post_returns_json_body(mock_post, settings, account_store, protector, clock) -> None:
    mock_post.return_value = Mock(status_code=200, json=Mock(return_value={"access_token": "a", "expires_in": 60}))
    handler = OAuthFlowHandler(settings=settings.oauth, store=account_store, protector=protector, _now=clock)

    assert handler.exchange_code("code", "verifier").access_token == "a"
