"""Composition root wiring the credential core and the prefetch worker."""

from __future__ import annotations

import logging
from typing import Any, Optional

import keyring

from .auth.audit import AuditLogger
from .auth.models import Credentials
from .auth.oauth import OAuthFlowHandler
from .auth.protector import KeyringTokenProtector
from .auth.refresh import acquire_credentials
from .auth.resolver import CredentialResolver
from .auth.state import CredentialStateMachine
from .auth.store import JsonAccountStore
from .config import PapermailSettings
from .prefetch.models import MailService
from .prefetch.queue import PrefetchQueue
from .prefetch.worker import PrefetchWorker

logger = logging.getLogger(__name__)


class PapermailRuntime:
    """Owns one instance of every long-lived component.

    Use it as an async context manager inside the application's event loop
    so the prefetch worker starts and stops with the host:

        async with PapermailRuntime(settings, mail_service=service) as runtime:
            runtime.queue.enqueue(user_id, "inbox", 1, 2, 50)
    """

    def __init__(
        self,
        settings: PapermailSettings,
        *,
        mail_service: Optional[MailService] = None,
        keyring_module: Any = keyring,
    ) -> None:
        self.settings = settings
        self.protector = KeyringTokenProtector(
            service_name=settings.security.keyring_service,
            key_id=settings.security.key_id,
            keyring_module=keyring_module,
        )
        self.protector.initialize()
        self.store = JsonAccountStore(settings.storage.account_store_path)
        self.audit_logger = (
            AuditLogger(settings.storage.audit_dir) if settings.storage.audit_dir else None
        )
        self.state_machine = CredentialStateMachine()
        self.resolver = CredentialResolver(
            store=self.store,
            protector=self.protector,
            settings=settings,
            audit_logger=self.audit_logger,
        )
        self.oauth = OAuthFlowHandler(
            settings=settings.oauth,
            store=self.store,
            protector=self.protector,
            security=settings.security,
            state_machine=self.state_machine,
            audit_logger=self.audit_logger,
        )
        self.queue = PrefetchQueue()
        self.worker: Optional[PrefetchWorker] = None
        if mail_service is not None and settings.prefetch.enabled:
            self.worker = PrefetchWorker(
                self.queue,
                mail_service,
                stop_timeout=settings.prefetch.stop_timeout_seconds,
            )
        else:
            # nothing drains the queue without a worker
            self.queue.close()

    def acquire_credentials(self, user_id: str) -> Credentials:
        return acquire_credentials(self.resolver, self.oauth, user_id)

    def enqueue_following(
        self,
        user_id: str,
        folder: str,
        page: int,
        page_size: int,
        total_count: int,
    ) -> bool:
        """Prefetch the configured number of pages after a page load."""
        if self.worker is None:
            return False
        return self.queue.enqueue_following(
            user_id,
            folder,
            page,
            page_size,
            total_count,
            lookahead=self.settings.prefetch.lookahead_pages,
        )

    async def start(self) -> None:
        if self.worker is not None:
            self.worker.start()
        logger.info("Papermail runtime started")

    async def shutdown(self) -> None:
        self.queue.close()
        if self.worker is not None:
            await self.worker.stop()
        logger.info("Papermail runtime stopped")

    async def __aenter__(self) -> "PapermailRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()


__all__ = ["PapermailRuntime"]
