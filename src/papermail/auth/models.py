"""Data contracts shared by the credential resolver and the OAuth flow."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Account(BaseModel):
    """A mailbox account for one (user, provider) pair.

    ``access_token`` and ``refresh_token`` always hold ciphertext produced by
    the token protector, or the empty string.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    provider_id: str
    email_address: str
    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    display_name: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("user_id", "provider_id", "email_address")
    @classmethod
    def _require_value(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value must not be empty")
        return value.strip()

    @field_validator("expires_at", "created_at")
    @classmethod
    def _ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("scopes")
    @classmethod
    def _ordered_unique(cls, value: List[str]) -> List[str]:
        seen: Dict[str, None] = {}
        for scope in value:
            if scope:
                seen.setdefault(scope, None)
        return list(seen)

    @model_validator(mode="after")
    def _access_token_has_expiry(self) -> "Account":
        if self.access_token and self.expires_at is None:
            raise ValueError("access_token requires expires_at")
        return self

    def has_valid_access_token(self, now: datetime) -> bool:
        if not self.is_active or not self.access_token or self.expires_at is None:
            return False
        return now < self.expires_at

    def with_updates(self, **changes: Any) -> "Account":
        """Return a validated copy with ``changes`` applied."""
        return Account.model_validate({**self.model_dump(), **changes})

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "Account":
        return cls.model_validate(payload)


class OAuthTokens(BaseModel):
    """Plaintext token payload returned by the identity provider.

    Lives only in memory; it is encrypted before it reaches the store.
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = Field(default="Bearer")
    expires_in: int = Field(default=0, ge=0)
    scope: List[str] = Field(default_factory=list)
    id_token: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"OAuthTokens(token_type={self.token_type!r}, expires_in={self.expires_in}, "
            f"scope={self.scope!r}, has_refresh_token={bool(self.refresh_token)})"
        )

    __str__ = __repr__

    def effective_expiry(
        self,
        issued_at: datetime,
        *,
        buffer_seconds: int = 60,
        minimum_seconds: int = 60,
    ) -> datetime:
        """Expiry stored for this access token.

        The validity window is ``max(expires_in - buffer, minimum)`` so a
        token reported as valid does not lapse during a slow downstream call.
        """
        lifetime = max(self.expires_in - buffer_seconds, minimum_seconds)
        return issued_at + timedelta(seconds=lifetime)

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "OAuthTokens":
        scope_value = payload.get("scope") or payload.get("scopes") or []
        if isinstance(scope_value, str):
            scope = scope_value.split()
        else:
            scope = list(scope_value)
        return cls(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token") or None,
            token_type=payload.get("token_type") or "Bearer",
            expires_in=int(payload.get("expires_in") or 0),
            scope=scope,
            id_token=payload.get("id_token") or None,
        )


class CredentialKind(str, Enum):
    """How a resolved credential authenticates."""

    OAUTH = "oauth"
    PASSWORD = "password"


class Credentials(NamedTuple):
    """Username and secret for a protocol operation."""

    username: str
    secret: str
    kind: CredentialKind = CredentialKind.OAUTH

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, kind={self.kind.value!r})"


class AuthorizationRequest(NamedTuple):
    """Authorization URL plus the PKCE verifier and state to persist."""

    url: str
    code_verifier: str
    state: str


__all__ = [
    "Account",
    "AuthorizationRequest",
    "CredentialKind",
    "Credentials",
    "OAuthTokens",
]
