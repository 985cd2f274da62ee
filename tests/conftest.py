"""Shared fixtures: in-memory keyring, controllable clock, temp settings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

import pytest

from papermail.auth.protector import KeyringTokenProtector
from papermail.auth.store import JsonAccountStore
from papermail.config import PapermailSettings


class InMemoryKeyring:
    """Simplified in-memory keyring for tests."""

    def __init__(self) -> None:
        self.values: Dict[str, Dict[str, str]] = {}

    def set_password(self, service: str, key: str, value: str) -> None:
        self.values.setdefault(service, {})[key] = value

    def get_password(self, service: str, key: str) -> Optional[str]:
        return self.values.get(service, {}).get(key)

    def delete_password(self, service: str, key: str) -> None:
        self.values.get(service, {}).pop(key, None)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def fake_keyring() -> InMemoryKeyring:
    return InMemoryKeyring()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def protector(fake_keyring) -> KeyringTokenProtector:
    protector = KeyringTokenProtector(service_name="papermail-test", keyring_module=fake_keyring)
    protector.initialize()
    return protector


@pytest.fixture()
def account_store(tmp_path: Path) -> JsonAccountStore:
    return JsonAccountStore(tmp_path / "accounts.json")


@pytest.fixture()
def settings(tmp_path: Path) -> PapermailSettings:
    return PapermailSettings.model_validate(
        {
            "oauth": {
                "client_id": "client-id",
                "client_secret": "client-secret",
                "authorization_endpoint": "https://login.example.com/authorize",
                "token_endpoint": "https://login.example.com/token",
                "redirect_uri": "https://app.example.com/oauth/callback",
                "scopes": ["openid", "email", "offline_access"],
            },
            "storage": {
                "account_store_path": str(tmp_path / "accounts.json"),
                "audit_dir": str(tmp_path / "audit"),
            },
        }
    )
