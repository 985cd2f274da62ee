"""Account persistence.

The resolver and the OAuth handler only need ``find_account_by_user`` and
``upsert_account``; anything that offers those two calls can back them.
``JsonAccountStore`` keeps every account in a single JSON document guarded
by a file lock and replaced atomically on each write.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from filelock import FileLock

from ..exceptions import AccountConflictError, AccountStoreError
from .models import Account

logger = logging.getLogger(__name__)


class AccountStore(Protocol):
    """Lookup and write access to accounts."""

    def find_account_by_user(self, user_id: str) -> Optional[Account]:
        ...

    def upsert_account(self, account: Account) -> Account:
        ...


@dataclass
class JsonAccountStore:
    """Account store backed by a JSON file.

    Records are keyed by account id. A user may hold one account per
    provider, and a mailbox address belongs to at most one user.
    """

    path: Path
    lock_timeout: float = 10.0

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self.path.with_suffix(".lock")), timeout=self.lock_timeout)
        if not self.path.exists():
            self._write({})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_account_by_user(self, user_id: str) -> Optional[Account]:
        """Return the user's account, preferring an active one."""
        matches = [acc for acc in self.list_accounts() if acc.user_id == user_id]
        if not matches:
            return None
        active = [acc for acc in matches if acc.is_active]
        return (active or matches)[0]

    def list_accounts(self) -> List[Account]:
        records = self._load()
        accounts = [Account.from_record(payload) for payload in records.values()]
        return sorted(accounts, key=lambda acc: acc.created_at)

    def upsert_account(self, account: Account) -> Account:
        """Insert or replace ``account``.

        Raises:
            AccountConflictError: If another user already owns the mailbox
                address, or the user already has a different account with
                the same provider
        """
        with self._lock:
            records = self._load()
            for account_id, payload in records.items():
                if account_id == account.id:
                    continue
                other = Account.from_record(payload)
                if other.email_address.lower() == account.email_address.lower() and (
                    other.user_id != account.user_id
                ):
                    raise AccountConflictError(
                        "Mailbox address is already linked to another user"
                    )
                if other.user_id == account.user_id and other.provider_id == account.provider_id:
                    raise AccountConflictError(
                        f"User already has a {account.provider_id} account"
                    )
            existing = records.get(account.id)
            if existing is not None:
                # id and created_at never change once written
                account = account.with_updates(created_at=existing["created_at"])
            records[account.id] = account.to_record()
            self._write(records)
        logger.debug(f"Stored account {account.id} ({account.provider_id})")
        return account

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            try:
                data = json.loads(self.path.read_text())
            except FileNotFoundError:
                return {}
            except json.JSONDecodeError as exc:
                logger.error(f"Account store at {self.path} is not valid JSON")
                raise AccountStoreError(
                    f"Account store at {self.path} is unreadable; refusing to overwrite it"
                ) from exc
        if not isinstance(data, dict):
            raise AccountStoreError(f"Account store at {self.path} does not hold a JSON object")
        return data

    def _write(self, records: Dict[str, Dict[str, object]]) -> None:
        with self._lock:
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(records, indent=2))
            os.replace(tmp, self.path)


__all__ = ["AccountStore", "JsonAccountStore"]
