"""Typed settings for the Papermail credential core.

Settings are plain pydantic models loaded from a JSON document with
``PAPERMAIL_*`` environment overrides layered on top, so services and CLI
commands can rely on validated values. Secrets are held as ``SecretStr``
and masked whenever settings are written back to disk.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator


DEFAULT_CONFIG_PATH = Path.home() / ".papermail" / "config.json"
DEFAULT_HOME = Path.home() / ".papermail"


class OAuthSettings(BaseModel):
    """OAuth client registration for the identity provider."""

    provider_id: str = Field(default="microsoft", description="Provider name stored on accounts")
    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: SecretStr = Field(default=SecretStr(""), description="OAuth client secret")
    authorization_endpoint: str = Field(
        default="https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
    )
    token_endpoint: str = Field(
        default="https://login.microsoftonline.com/common/oauth2/v2.0/token"
    )
    redirect_uri: str = Field(default="http://localhost:5000/oauth/callback")
    scopes: List[str] = Field(
        default_factory=lambda: [
            "openid",
            "email",
            "offline_access",
            "https://outlook.office.com/IMAP.AccessAsUser.All",
            "https://outlook.office.com/SMTP.Send",
        ]
    )
    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)

    @field_validator("authorization_endpoint", "token_endpoint", "redirect_uri")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        if not value.startswith(("https://", "http://")):
            raise ValueError("OAuth endpoints must be http(s) URLs")
        return value


class ImapSettings(BaseModel):
    """IMAP endpoint plus an optional static fallback credential."""

    host: str = ""
    port: int = Field(default=993, ge=1, le=65535)
    use_ssl: bool = True
    trust_certificates: bool = False
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    providers: List[str] = Field(
        default_factory=list,
        description="Providers the fallback applies to; empty means all",
    )


class SmtpSettings(BaseModel):
    """SMTP endpoint plus an optional static fallback credential."""

    host: str = ""
    port: int = Field(default=587, ge=1, le=65535)
    use_tls: bool = True
    trust_certificates: bool = False
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    providers: List[str] = Field(default_factory=list)


class SecuritySettings(BaseModel):
    """Token protection and expiry tuning."""

    keyring_service: str = Field(default="papermail", description="Keychain service name")
    key_id: str = Field(default="token_protection_key", description="Key ring entry name")
    access_token_buffer_seconds: int = Field(default=60, ge=0, le=3600)
    minimum_token_validity_seconds: int = Field(default=60, ge=1, le=3600)


class PrefetchSettings(BaseModel):
    """Background prefetch tuning."""

    enabled: bool = True
    lookahead_pages: int = Field(default=2, ge=1, le=10)
    stop_timeout_seconds: float = Field(default=5.0, gt=0, le=300)


class StorageSettings(BaseModel):
    """Local persistence locations."""

    account_store_path: Path = Field(default=DEFAULT_HOME / "accounts.json")
    audit_dir: Optional[Path] = Field(default=DEFAULT_HOME / "audit")

    @field_validator("account_store_path", "audit_dir")
    @classmethod
    def _expand(cls, value: Optional[Path]) -> Optional[Path]:
        if value is None:
            return None
        return value.expanduser()


class PapermailSettings(BaseModel):
    """Root configuration state."""

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    imap: ImapSettings = Field(default_factory=ImapSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    prefetch: PrefetchSettings = Field(default_factory=PrefetchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    def fallback_credential(self, provider_id: Optional[str] = None) -> Optional["FallbackCredential"]:
        """Return the static username/password pair for ``provider_id``.

        IMAP settings win over SMTP settings. A section only qualifies when
        both username and password are set and its ``providers`` list is
        empty or names the provider.
        """

        for section in (self.imap, self.smtp):
            if not section.username or section.password is None:
                continue
            password = section.password.get_secret_value()
            if not password:
                continue
            if section.providers and provider_id not in section.providers:
                continue
            return FallbackCredential(username=section.username, password=password)
        return None


class FallbackCredential(NamedTuple):
    username: str
    password: str


def load_settings(path: Path = DEFAULT_CONFIG_PATH) -> PapermailSettings:
    """Load settings from disk or raise if invalid."""

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found at {path}")
    payload = json.loads(path.read_text())
    try:
        return PapermailSettings.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def save_settings(settings: PapermailSettings, path: Path = DEFAULT_CONFIG_PATH) -> None:
    """Persist settings to disk with masked secrets."""

    payload = settings.model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))


def bootstrap_settings(
    *,
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PapermailSettings:
    """Load settings (or defaults) and apply overrides then environment."""

    if path is not None and path.exists():
        base = load_settings(path).model_dump(mode="python")
    else:
        base = PapermailSettings().model_dump(mode="python")

    merged = dict(base)
    for key, value in (overrides or {}).items():
        merged[key] = value
    merged = _apply_env_overrides(merged)
    return PapermailSettings.model_validate(merged)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    oauth = data.setdefault("oauth", {})
    _set_env_override(oauth, "provider_id", "PAPERMAIL_OAUTH_PROVIDER")
    _set_env_override(oauth, "client_id", "PAPERMAIL_OAUTH_CLIENT_ID")
    _set_env_override(oauth, "client_secret", "PAPERMAIL_OAUTH_CLIENT_SECRET")
    _set_env_override(oauth, "authorization_endpoint", "PAPERMAIL_OAUTH_AUTHORIZATION_ENDPOINT")
    _set_env_override(oauth, "token_endpoint", "PAPERMAIL_OAUTH_TOKEN_ENDPOINT")
    _set_env_override(oauth, "redirect_uri", "PAPERMAIL_OAUTH_REDIRECT_URI")
    scopes = os.getenv("PAPERMAIL_OAUTH_SCOPES")
    if scopes is not None:
        oauth["scopes"] = scopes.split()

    imap = data.setdefault("imap", {})
    _set_env_override(imap, "host", "PAPERMAIL_IMAP_HOST")
    _set_env_override(imap, "port", "PAPERMAIL_IMAP_PORT", cast_int=True)
    _set_env_override(imap, "username", "PAPERMAIL_IMAP_USERNAME")
    _set_env_override(imap, "password", "PAPERMAIL_IMAP_PASSWORD")

    smtp = data.setdefault("smtp", {})
    _set_env_override(smtp, "host", "PAPERMAIL_SMTP_HOST")
    _set_env_override(smtp, "port", "PAPERMAIL_SMTP_PORT", cast_int=True)
    _set_env_override(smtp, "username", "PAPERMAIL_SMTP_USERNAME")
    _set_env_override(smtp, "password", "PAPERMAIL_SMTP_PASSWORD")

    prefetch = data.setdefault("prefetch", {})
    _set_env_override(prefetch, "enabled", "PAPERMAIL_PREFETCH_ENABLED", cast_bool=True)

    storage = data.setdefault("storage", {})
    _set_env_override(storage, "account_store_path", "PAPERMAIL_ACCOUNT_STORE")
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_bool: bool = False,
    cast_int: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if cast_bool:
        mapping[key] = raw.lower() in {"1", "true", "yes"}
    elif cast_int:
        mapping[key] = int(raw)
    else:
        mapping[key] = raw


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "FallbackCredential",
    "ImapSettings",
    "OAuthSettings",
    "PapermailSettings",
    "PrefetchSettings",
    "SecuritySettings",
    "SmtpSettings",
    "StorageSettings",
    "bootstrap_settings",
    "load_settings",
    "save_settings",
]
