"""Resolve a usable credential for an IMAP/SMTP operation.

Reads are local and never touch the network. When nothing valid is on file
the caller runs the OAuth flow (see :mod:`papermail.auth.refresh`) and asks
again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..config import FallbackCredential, PapermailSettings
from ..exceptions import TokenDecryptionError
from .audit import AuditEvent, AuditLogger
from .models import Account, CredentialKind, Credentials
from .protector import ACCESS_TOKEN_PURPOSE, REFRESH_TOKEN_PURPOSE, DataProtector
from .store import AccountStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CredentialResolver:
    """Looks up stored tokens and the configured fallback credential.

    Attributes:
        store: Account persistence
        protector: Decrypts stored tokens
        settings: Source of the static fallback credential
        audit_logger: Optional audit sink for invalidated credentials
    """

    store: AccountStore
    protector: DataProtector
    settings: Optional[PapermailSettings] = None
    audit_logger: Optional[AuditLogger] = None
    _now: Callable[[], datetime] = _utcnow

    def get_access_token(self, user_id: str) -> Optional[str]:
        """Return the decrypted access token if one is currently valid."""
        account = self._find(user_id)
        if account is None or not account.has_valid_access_token(self._now()):
            return None
        return self._reveal(account, ACCESS_TOKEN_PURPOSE, account.access_token)

    def get_refresh_token(self, user_id: str) -> Optional[str]:
        """Return the decrypted refresh token regardless of access-token expiry."""
        account = self._find(user_id)
        if account is None or not account.is_active or not account.refresh_token:
            return None
        return self._reveal(account, REFRESH_TOKEN_PURPOSE, account.refresh_token)

    def get_credentials(self, user_id: str) -> Optional[Credentials]:
        """Return ``(username, secret)`` for a protocol operation.

        A valid access token wins. Otherwise the static fallback configured
        for the account's provider is used with the account's mailbox
        address as username. A user with no account gets nothing.
        """
        account = self._find(user_id)
        if account is None:
            return None

        token = self.get_access_token(user_id)
        if token:
            return Credentials(account.email_address, token, CredentialKind.OAUTH)

        fallback = self._fallback(account.provider_id)
        if fallback is None:
            logger.debug(f"No usable credential for account {account.id}")
            return None
        return Credentials(account.email_address, fallback.password, CredentialKind.PASSWORD)

    def protect_token(self, plaintext: str, *, purpose: str = REFRESH_TOKEN_PURPOSE) -> str:
        return self.protector.protect(purpose, plaintext)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find(self, user_id: str) -> Optional[Account]:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        return self.store.find_account_by_user(user_id)

    def _fallback(self, provider_id: Optional[str]) -> Optional[FallbackCredential]:
        if self.settings is None:
            return None
        return self.settings.fallback_credential(provider_id)

    def _reveal(self, account: Account, purpose: str, ciphertext: str) -> Optional[str]:
        try:
            return self.protector.unprotect(purpose, ciphertext)
        except TokenDecryptionError:
            logger.warning(
                f"Stored {purpose} for account {account.id} failed to decrypt; "
                "clearing tokens so the user re-authorizes"
            )
            self._invalidate(account, purpose)
            return None

    def _invalidate(self, account: Account, purpose: str) -> None:
        cleared = account.with_updates(access_token="", refresh_token="", expires_at=None)
        self.store.upsert_account(cleared)
        self._audit(
            account,
            action="token_decrypt_failed",
            status="invalidated",
            metadata={"purpose": purpose},
        )

    def _audit(self, account: Account, *, action: str, status: str, metadata: Any) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.record(
            AuditEvent.for_user(
                action=action,
                status=status,
                user_id=account.user_id,
                email_address=account.email_address,
                provider=account.provider_id,
                metadata=metadata,
            )
        )


__all__ = ["CredentialResolver"]
