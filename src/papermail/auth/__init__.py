"""Credential resolution, token protection and the OAuth flow."""

from .audit import AuditEvent, AuditLogger
from .claims import IdentityClaims
from .models import Account, AuthorizationRequest, CredentialKind, Credentials, OAuthTokens
from .oauth import OAuthFlowHandler
from .protector import (
    ACCESS_TOKEN_PURPOSE,
    REFRESH_TOKEN_PURPOSE,
    DataProtector,
    KeyringTokenProtector,
    PurposeProtector,
)
from .refresh import acquire_credentials
from .resolver import CredentialResolver
from .state import CredentialState, CredentialStateMachine, derive_state
from .store import AccountStore, JsonAccountStore

__all__ = [
    "ACCESS_TOKEN_PURPOSE",
    "Account",
    "AccountStore",
    "AuditEvent",
    "AuditLogger",
    "AuthorizationRequest",
    "CredentialKind",
    "CredentialResolver",
    "CredentialState",
    "CredentialStateMachine",
    "Credentials",
    "DataProtector",
    "IdentityClaims",
    "JsonAccountStore",
    "KeyringTokenProtector",
    "OAuthFlowHandler",
    "OAuthTokens",
    "PurposeProtector",
    "REFRESH_TOKEN_PURPOSE",
    "acquire_credentials",
    "derive_state",
]
