"""Background task that warms mail service caches for queued pages."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from ..auth.audit import identifier_hash
from .models import MailFolder, MailService, PrefetchRequest
from .queue import PrefetchQueue

logger = logging.getLogger(__name__)


class PrefetchWorker:
    """Single consumer of a :class:`PrefetchQueue`.

    Every page of a request is fetched in ascending order and the result is
    thrown away; the point is the side effect on the mail service's cache.
    Failures are logged and never leave the worker.
    """

    def __init__(
        self,
        queue: PrefetchQueue,
        mail_service: MailService,
        *,
        stop_timeout: float = 5.0,
    ) -> None:
        self._queue = queue
        self._mail_service = mail_service
        self._stop_timeout = stop_timeout
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[PrefetchRequest] = None
        self._stopping = False
        self.pages_warmed = 0
        self.pages_failed = 0
        self.requests_done = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the worker on the running event loop."""
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._queue.bind_loop(loop)
        self._stopping = False
        self._task = loop.create_task(self._run())
        logger.info("Prefetch worker started")

    async def stop(self) -> None:
        """Stop after the current request, or at once when idle.

        A request still running after ``stop_timeout`` seconds is cancelled.
        Requests that were queued but not started are abandoned.
        """
        task = self._task
        if task is None:
            return
        self._stopping = True
        if self._current is None:
            task.cancel()
        else:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Prefetch request did not finish before stop timeout; cancelling")
                task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Prefetch worker stopped")

    async def process(self, request: PrefetchRequest) -> None:
        """Warm every page of ``request``."""
        folder = MailFolder.parse(request.folder)
        if folder is None:
            logger.debug(f"Ignoring prefetch for unknown folder {request.folder!r}")
            return
        fetch = getattr(self._mail_service, f"get_{folder.value}", None)
        if fetch is None:
            logger.warning(f"Mail service cannot list the {folder.value} folder; skipping prefetch")
            return
        for page in request.pages():
            try:
                await _call(fetch, request.user_id, page, request.page_size)
                self.pages_warmed += 1
            except Exception:
                self.pages_failed += 1
                logger.warning(
                    f"Prefetch of {folder.value} page {page} failed for user "
                    f"{identifier_hash(request.user_id)}",
                    exc_info=True,
                )

    async def _run(self) -> None:
        while not self._stopping:
            request = await self._queue.get()
            self._current = request
            try:
                await self.process(request)
            except Exception:
                logger.warning(f"Prefetch request for {request.folder!r} failed", exc_info=True)
            finally:
                self._current = None
                self.requests_done += 1


async def _call(fetch: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(fetch):
        return await fetch(*args)
    result = await asyncio.to_thread(fetch, *args)
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = ["PrefetchWorker"]
