"""Tests for Papermail settings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from papermail.config import (
    PapermailSettings,
    bootstrap_settings,
    load_settings,
    save_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "PAPERMAIL_OAUTH_CLIENT_ID",
        "PAPERMAIL_OAUTH_CLIENT_SECRET",
        "PAPERMAIL_OAUTH_SCOPES",
        "PAPERMAIL_IMAP_USERNAME",
        "PAPERMAIL_IMAP_PASSWORD",
        "PAPERMAIL_IMAP_PORT",
        "PAPERMAIL_PREFETCH_ENABLED",
        "PAPERMAIL_ACCOUNT_STORE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_are_valid() -> None:
    settings = PapermailSettings()

    assert settings.security.access_token_buffer_seconds == 60
    assert settings.prefetch.lookahead_pages == 2
    assert settings.fallback_credential("microsoft") is None


def test_load_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "missing.json")


def test_load_invalid_file_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"oauth": {"token_endpoint": "ftp://nope"}}))

    with pytest.raises(ValueError):
        load_settings(path)


def test_save_masks_secrets(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    settings = PapermailSettings.model_validate(
        {"oauth": {"client_secret": "s3cret"}, "imap": {"username": "u", "password": "pw"}}
    )

    save_settings(settings, path)

    text = path.read_text()
    assert "s3cret" not in text
    assert '"pw"' not in text


def test_environment_overrides(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"oauth": {"client_id": "from-file"}}))
    monkeypatch.setenv("PAPERMAIL_OAUTH_CLIENT_ID", "from-env")
    monkeypatch.setenv("PAPERMAIL_OAUTH_SCOPES", "openid email")
    monkeypatch.setenv("PAPERMAIL_IMAP_PORT", "1993")
    monkeypatch.setenv("PAPERMAIL_PREFETCH_ENABLED", "false")
    monkeypatch.setenv("PAPERMAIL_ACCOUNT_STORE", str(tmp_path / "a.json"))

    settings = bootstrap_settings(path=path)

    assert settings.oauth.client_id == "from-env"
    assert settings.oauth.scopes == ["openid", "email"]
    assert settings.imap.port == 1993
    assert settings.prefetch.enabled is False
    assert settings.storage.account_store_path == tmp_path / "a.json"


def test_bootstrap_without_file_uses_defaults() -> None:
    settings = bootstrap_settings(path=None, overrides={"prefetch": {"lookahead_pages": 3}})

    assert settings.prefetch.lookahead_pages == 3
    assert settings.oauth.provider_id == "microsoft"


def test_imap_fallback_wins_over_smtp() -> None:
    settings = PapermailSettings.model_validate(
        {
            "imap": {"username": "imap-user", "password": "imap-pw"},
            "smtp": {"username": "smtp-user", "password": "smtp-pw"},
        }
    )

    assert settings.fallback_credential("microsoft") == ("imap-user", "imap-pw")


def test_fallback_provider_filter() -> None:
    settings = PapermailSettings.model_validate(
        {
            "imap": {"username": "imap-user", "password": "imap-pw", "providers": ["google"]},
            "smtp": {"username": "smtp-user", "password": "smtp-pw"},
        }
    )

    assert settings.fallback_credential("google") == ("imap-user", "imap-pw")
    assert settings.fallback_credential("microsoft") == ("smtp-user", "smtp-pw")


def test_blank_password_is_not_a_fallback() -> None:
    settings = PapermailSettings.model_validate({"imap": {"username": "u", "password": ""}})

    assert settings.fallback_credential(None) is None
