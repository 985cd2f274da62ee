"""Resolve-or-refresh helper for protocol operations."""

from __future__ import annotations

import logging

from ..exceptions import AuthenticationError, ReauthorizationRequired
from .models import Credentials
from .oauth import OAuthFlowHandler
from .resolver import CredentialResolver

logger = logging.getLogger(__name__)


def acquire_credentials(
    resolver: CredentialResolver,
    handler: OAuthFlowHandler,
    user_id: str,
) -> Credentials:
    """Return credentials for ``user_id``, refreshing once if needed.

    A stored access token is preferred. When it has lapsed the stored
    refresh token is redeemed, the new tokens are stored and resolution is
    retried. The static fallback only applies when no refresh token is on
    file.

    Raises:
        ReauthorizationRequired: If the user must go through consent again
    """
    token = resolver.get_access_token(user_id)
    if token is None:
        refresh_token = resolver.get_refresh_token(user_id)
        if refresh_token:
            try:
                tokens = handler.refresh(refresh_token)
            except AuthenticationError as exc:
                logger.warning(f"Refresh rejected: {exc}")
                raise ReauthorizationRequired(user_id, "refresh token rejected") from exc
            handler.store_tokens(user_id, tokens)

    credentials = resolver.get_credentials(user_id)
    if credentials is None:
        raise ReauthorizationRequired(user_id, "no stored or configured credential")
    return credentials


__all__ = ["acquire_credentials"]
