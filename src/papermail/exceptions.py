"""Exception hierarchy for the Papermail credential core."""

from __future__ import annotations


class PapermailError(Exception):
    """Base exception for all Papermail errors."""


class AuthenticationError(PapermailError):
    """Raised when the identity provider rejects a code exchange or refresh.

    The handler never retries internally; the caller decides whether to
    restart the authorization flow.
    """


class ReauthorizationRequired(PapermailError):
    """Raised when no credential can be produced without user interaction."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"User {user_id} must re-authorize: {reason}")
        self.user_id = user_id
        self.reason = reason


class TokenProtectionError(PapermailError):
    """Base exception for token encryption errors."""


class KeyNotFoundError(TokenProtectionError):
    """Raised when a key ring entry is missing from the keychain."""


class TokenDecryptionError(TokenProtectionError):
    """Raised when a ciphertext cannot be decrypted.

    Covers corrupted or tampered data, a purpose mismatch and a key version
    that is no longer in the key ring.
    """


class KeyRotationError(TokenProtectionError):
    """Raised when key rotation fails."""


class AccountConflictError(PapermailError):
    """Raised when an upsert would break account uniqueness.

    Example:
        Two different users claiming the same mailbox address.
    """


class AccountStoreError(PapermailError):
    """Raised when the account store cannot be read safely."""


class InvalidStateTransitionError(ValueError):
    """Raised when a credential state transition is not allowed.

    This indicates a violation of the rules in ``VALID_TRANSITIONS``, for
    example moving straight from NO_TOKEN to REFRESHING.
    """


__all__ = [
    "AccountConflictError",
    "AccountStoreError",
    "AuthenticationError",
    "InvalidStateTransitionError",
    "KeyNotFoundError",
    "KeyRotationError",
    "PapermailError",
    "ReauthorizationRequired",
    "TokenDecryptionError",
    "TokenProtectionError",
]
