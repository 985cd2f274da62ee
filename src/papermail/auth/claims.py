"""Typed extraction of the identity fields Papermail needs from a token.

Only the subject and the mailbox address are read. The ID token arrives
directly from the token endpoint over TLS, so its signature is not
re-verified here; this is a decode, not a validation framework.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Mapping, Optional

from pydantic import BaseModel, field_validator

from ..exceptions import AuthenticationError

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+(\.[a-zA-Z]{2,})?$")

SUBJECT_CLAIMS = ("sub", "oid", "sid")
EMAIL_CLAIMS = ("email", "upn", "preferred_username", "unique_name")


class IdentityClaims(BaseModel):
    """Subject and email decoded from an identity token."""

    subject: str
    email: Optional[str] = None

    @field_validator("subject")
    @classmethod
    def _require_subject(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("subject claim is empty")
        return value.strip()

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "IdentityClaims":
        subject = _first_value(claims, SUBJECT_CLAIMS)
        if subject is None:
            raise AuthenticationError("Identity token carries no subject claim")
        email = None
        for name in EMAIL_CLAIMS:
            value = claims.get(name)
            if isinstance(value, str) and EMAIL_PATTERN.match(value):
                email = value
                break
        return cls(subject=subject, email=email)

    @classmethod
    def from_id_token(cls, id_token: str) -> "IdentityClaims":
        """Decode the payload segment of a compact JWT.

        Raises:
            AuthenticationError: If the token is not a decodable JWT
        """
        parts = id_token.split(".")
        if len(parts) != 3:
            raise AuthenticationError("Identity token is not a compact JWT")
        try:
            padded = parts[1] + "=" * (-len(parts[1]) % 4)
            payload = json.loads(base64.urlsafe_b64decode(padded).decode("utf-8"))
        except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
            raise AuthenticationError("Identity token payload is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("Identity token payload is not an object")
        return cls.from_claims(payload)


def _first_value(claims: Mapping[str, Any], names: tuple) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


__all__ = ["EMAIL_PATTERN", "IdentityClaims"]
