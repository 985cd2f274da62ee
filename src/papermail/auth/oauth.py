"""OAuth 2.0 authorization code flow with PKCE.

The handler builds the consent URL, exchanges the returned code, refreshes
access tokens and writes the results through the token protector into the
account store. It never retries; a rejected grant surfaces as
``AuthenticationError`` and the caller decides what to do next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from ..config import OAuthSettings, SecuritySettings
from ..exceptions import AuthenticationError
from .audit import AuditEvent, AuditLogger
from .claims import IdentityClaims
from .models import Account, AuthorizationRequest, OAuthTokens
from .pkce import generate_code_challenge, generate_code_verifier, generate_state
from .protector import ACCESS_TOKEN_PURPOSE, REFRESH_TOKEN_PURPOSE, DataProtector
from .state import CredentialState, CredentialStateMachine, derive_state
from .store import AccountStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OAuthFlowHandler:
    """Runs the provider side of the credential lifecycle.

    Attributes:
        settings: Client registration and endpoints
        store: Account persistence
        protector: Encrypts tokens before they are stored
        security: Expiry buffer tuning
        state_machine: Validates every credential transition
        audit_logger: Optional audit sink
    """

    settings: OAuthSettings
    store: AccountStore
    protector: DataProtector
    security: SecuritySettings = field(default_factory=SecuritySettings)
    state_machine: CredentialStateMachine = field(default_factory=CredentialStateMachine)
    audit_logger: Optional[AuditLogger] = None
    _now: Callable[[], datetime] = _utcnow

    # ------------------------------------------------------------------
    # Provider round trips
    # ------------------------------------------------------------------

    def build_authorization_url(self) -> AuthorizationRequest:
        """Create the consent URL plus the verifier and state to persist.

        The caller keeps ``code_verifier`` and ``state`` with the browsing
        session and checks ``state`` when the provider redirects back.
        """
        code_verifier = generate_code_verifier()
        state = generate_state()
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.settings.scopes),
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": "S256",
            "state": state,
        }
        url = f"{self.settings.authorization_endpoint}?{urlencode(params)}"
        return AuthorizationRequest(url=url, code_verifier=code_verifier, state=state)

    def exchange_code(self, code: str, code_verifier: str) -> OAuthTokens:
        """Redeem an authorization code.

        Raises:
            AuthenticationError: If the provider rejects the grant, the
                request fails, or the response carries no access token
        """
        if not code:
            raise ValueError("authorization code is required")
        if not code_verifier:
            raise ValueError("code_verifier is required")
        data = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret.get_secret_value(),
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": self.settings.redirect_uri,
        }
        return self._token_request(data, grant="authorization_code")

    def refresh(self, refresh_token: str) -> OAuthTokens:
        """Redeem a refresh token.

        Providers may rotate the refresh token; when the response omits one
        the supplied token is carried over.
        """
        if not refresh_token:
            raise ValueError("refresh_token is required")
        data = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret.get_secret_value(),
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        tokens = self._token_request(data, grant="refresh_token")
        if not tokens.refresh_token:
            tokens = tokens.model_copy(update={"refresh_token": refresh_token})
        return tokens

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def store_tokens(
        self,
        user_id: str,
        tokens: OAuthTokens,
        *,
        email_address: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> Account:
        """Encrypt ``tokens`` and write them to the user's account.

        The account is created on the first successful authentication. Its
        mailbox address comes from ``email_address`` or, failing that, from
        the ID token.
        """
        _require_user(user_id)
        now = self._now()
        account = self.store.find_account_by_user(user_id)
        previous = derive_state(account, now)

        expires_at = tokens.effective_expiry(
            now,
            buffer_seconds=self.security.access_token_buffer_seconds,
            minimum_seconds=self.security.minimum_token_validity_seconds,
        )
        changes: Dict[str, Any] = {
            "access_token": self.protector.protect(ACCESS_TOKEN_PURPOSE, tokens.access_token),
            "expires_at": expires_at,
            "is_active": True,
        }
        if tokens.refresh_token:
            changes["refresh_token"] = self.protector.protect(
                REFRESH_TOKEN_PURPOSE, tokens.refresh_token
            )
        if tokens.scope:
            changes["scopes"] = tokens.scope

        if account is None:
            mailbox = email_address or self._email_from_id_token(tokens)
            if not mailbox:
                raise AuthenticationError(
                    "Cannot create an account without a mailbox address"
                )
            account = Account(
                user_id=user_id,
                provider_id=provider_id or self.settings.provider_id,
                email_address=mailbox,
                **changes,
            )
            action = "credential_create"
        else:
            if email_address:
                changes["email_address"] = email_address
            account = account.with_updates(**changes)
            action = "credential_update"

        self._advance(user_id, previous, CredentialState.AUTHORIZED)
        account = self.store.upsert_account(account)
        logger.info(f"Stored tokens for account {account.id}; valid until {expires_at.isoformat()}")
        self._audit(account, action=action, status="success")
        return account

    def revoke_tokens(self, user_id: str) -> None:
        """Clear stored tokens and deactivate the account.

        Calling it again, or for an unknown user, changes nothing.
        """
        _require_user(user_id)
        account = self.store.find_account_by_user(user_id)
        if account is None:
            logger.debug("Revoke requested for a user with no account")
            return
        previous = derive_state(account, self._now())
        self.state_machine.transition(
            user_id, previous, CredentialState.REVOKED, reason="revoke_tokens"
        )
        if previous is CredentialState.REVOKED and not (
            account.access_token or account.refresh_token
        ):
            return
        revoked = account.with_updates(
            access_token="", refresh_token="", expires_at=None, is_active=False
        )
        self.store.upsert_account(revoked)
        logger.info(f"Revoked tokens for account {account.id}")
        self._audit(revoked, action="credential_revoke", status="success")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _advance(self, user_id: str, previous: CredentialState, target: CredentialState) -> None:
        if previous is CredentialState.AUTHORIZED:
            self.state_machine.transition(user_id, previous, target, reason="token_store")
            return
        if previous is CredentialState.EXPIRED:
            path = (CredentialState.REFRESHING, target)
        else:
            path = (CredentialState.PENDING_AUTHORIZATION, target)
        current = previous
        for step in path:
            self.state_machine.transition(user_id, current, step, reason="token_store")
            current = step

    def _token_request(self, data: Dict[str, str], *, grant: str) -> OAuthTokens:
        payload = self._post(self.settings.token_endpoint, data=data)
        try:
            tokens = OAuthTokens.from_response(payload)
        except (TypeError, ValueError) as exc:
            raise AuthenticationError(f"Token response for {grant} is malformed") from exc
        if not tokens.access_token:
            raise AuthenticationError(f"Token response for {grant} carried no access token")
        logger.debug(f"Token endpoint accepted {grant} grant: {tokens!r}")
        return tokens

    def _post(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = requests.post(url, data=data, timeout=self.settings.request_timeout_seconds)
        except requests.RequestException as exc:
            logger.error(f"Token endpoint request failed: {exc.__class__.__name__}")
            raise AuthenticationError("Token endpoint is unreachable") from exc
        if resp.status_code != 200:
            raise AuthenticationError(
                f"OAuth provider returned {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthenticationError("OAuth provider returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("OAuth provider returned an unexpected body")
        return payload

    @staticmethod
    def _email_from_id_token(tokens: OAuthTokens) -> Optional[str]:
        if not tokens.id_token:
            return None
        return IdentityClaims.from_id_token(tokens.id_token).email

    def _audit(self, account: Account, *, action: str, status: str) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.record(
            AuditEvent.for_user(
                action=action,
                status=status,
                user_id=account.user_id,
                email_address=account.email_address,
                provider=account.provider_id,
            )
        )


def _require_user(user_id: str) -> None:
    if not user_id or not user_id.strip():
        raise ValueError("user_id is required")


__all__ = ["OAuthFlowHandler"]
