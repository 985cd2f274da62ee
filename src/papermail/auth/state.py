"""Credential lifecycle state machine.

Each account's credential moves through
``NO_TOKEN -> PENDING_AUTHORIZATION -> AUTHORIZED -> EXPIRED -> REFRESHING
-> AUTHORIZED | REVOKED``. The OAuth flow handler validates every move it
makes against ``VALID_TRANSITIONS`` so an illegal sequence (for example a
refresh with no refresh token on file) fails loudly instead of writing a
half-updated account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from ..exceptions import InvalidStateTransitionError
from .models import Account

logger = logging.getLogger(__name__)


class CredentialState(str, Enum):
    """Credential lifecycle states."""

    NO_TOKEN = "no_token"  # Never authorized
    PENDING_AUTHORIZATION = "pending_authorization"  # Browser consent in progress
    AUTHORIZED = "authorized"  # Usable access token on file
    EXPIRED = "expired"  # Access token lapsed, refresh token may remain
    REFRESHING = "refreshing"  # Refresh grant in flight
    REVOKED = "revoked"  # Tokens cleared, account soft-deleted


VALID_TRANSITIONS: Dict[CredentialState, Set[CredentialState]] = {
    CredentialState.NO_TOKEN: {
        CredentialState.PENDING_AUTHORIZATION,
        CredentialState.REVOKED,
    },
    CredentialState.PENDING_AUTHORIZATION: {
        CredentialState.AUTHORIZED,
        CredentialState.NO_TOKEN,  # Consent refused or abandoned
        CredentialState.PENDING_AUTHORIZATION,  # Restarted flow
    },
    CredentialState.AUTHORIZED: {
        CredentialState.EXPIRED,
        CredentialState.REFRESHING,  # Proactive refresh
        CredentialState.AUTHORIZED,  # Re-store (idempotent)
        CredentialState.REVOKED,
    },
    CredentialState.EXPIRED: {
        CredentialState.REFRESHING,
        CredentialState.PENDING_AUTHORIZATION,  # No refresh token, full re-auth
        CredentialState.REVOKED,
    },
    CredentialState.REFRESHING: {
        CredentialState.AUTHORIZED,
        CredentialState.REVOKED,  # Provider rejected the refresh token
        CredentialState.EXPIRED,  # Transient failure, try later
    },
    CredentialState.REVOKED: {
        CredentialState.PENDING_AUTHORIZATION,
        CredentialState.REVOKED,  # Already revoked (idempotent)
    },
}


def derive_state(account: Optional[Account], now: Optional[datetime] = None) -> CredentialState:
    """Infer the resting state of an account's credential from stored fields.

    PENDING_AUTHORIZATION and REFRESHING are transient and never inferred.
    """
    if account is None:
        return CredentialState.NO_TOKEN
    if not account.is_active:
        return CredentialState.REVOKED
    now = now or datetime.now(timezone.utc)
    if account.has_valid_access_token(now):
        return CredentialState.AUTHORIZED
    if account.access_token or account.refresh_token:
        return CredentialState.EXPIRED
    return CredentialState.NO_TOKEN


@dataclass
class StateTransition:
    """Records one credential state change."""

    user_id: str
    from_state: CredentialState
    to_state: CredentialState
    timestamp: datetime
    reason: Optional[str] = None

    def is_valid(self) -> bool:
        return self.to_state in VALID_TRANSITIONS.get(self.from_state, set())

    def is_idempotent(self) -> bool:
        return self.from_state == self.to_state


@dataclass
class CredentialStateMachine:
    """Validates credential transitions and keeps a bounded history."""

    history_limit: int = 256
    _history: List[StateTransition] = field(default_factory=list, init=False)

    def transition(
        self,
        user_id: str,
        from_state: CredentialState,
        to_state: CredentialState,
        *,
        reason: Optional[str] = None,
    ) -> StateTransition:
        """Validate and record a transition.

        Raises:
            InvalidStateTransitionError: If ``to_state`` is not reachable
                from ``from_state``
        """
        record = StateTransition(
            user_id=user_id,
            from_state=from_state,
            to_state=to_state,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )
        if not record.is_valid():
            logger.warning(
                f"Rejected credential transition {from_state.value} -> {to_state.value}"
            )
            raise InvalidStateTransitionError(
                f"Invalid credential transition: {from_state.value} -> {to_state.value}"
            )
        self._history.append(record)
        if len(self._history) > self.history_limit:
            del self._history[: len(self._history) - self.history_limit]
        logger.debug(f"Credential transition {from_state.value} -> {to_state.value}")
        return record

    def history(self, user_id: Optional[str] = None) -> List[StateTransition]:
        if user_id is None:
            return list(self._history)
        return [item for item in self._history if item.user_id == user_id]


__all__ = [
    "CredentialState",
    "CredentialStateMachine",
    "StateTransition",
    "VALID_TRANSITIONS",
    "derive_state",
]
