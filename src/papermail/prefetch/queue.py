"""In-memory prefetch queue.

Page handlers push requests from wherever they run; the single worker task
drains them on the event loop. Delivery is best effort: nothing is
persisted, and a request that cannot be queued is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional

from .models import PrefetchRequest

logger = logging.getLogger(__name__)


class PrefetchQueue:
    """Unbounded multi-producer, single-consumer FIFO of prefetch requests."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PrefetchRequest] = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Record the loop the consumer runs on so other threads can hand off."""
        self._loop = loop

    def enqueue(
        self,
        user_id: str,
        folder: str,
        start_page: int,
        page_count: int,
        page_size: int,
    ) -> bool:
        """Queue a request without blocking.

        Returns:
            True if the request was accepted, False if it was dropped
        """
        if self._closed:
            return False
        if not user_id or not user_id.strip() or not folder or not folder.strip():
            logger.debug("Dropping prefetch request with blank user or folder")
            return False
        if start_page < 0 or page_count < 0 or page_size < 1:
            logger.debug("Dropping prefetch request with invalid paging")
            return False

        request = PrefetchRequest(user_id, folder, start_page, page_count, page_size)
        loop = self._loop
        if loop is None or _running_loop() is loop:
            self._queue.put_nowait(request)
            return True
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, request)
        except RuntimeError:
            # loop already closed
            logger.debug("Dropping prefetch request; event loop is closed")
            return False
        return True

    def enqueue_following(
        self,
        user_id: str,
        folder: str,
        page: int,
        page_size: int,
        total_count: int,
        lookahead: int = 2,
    ) -> bool:
        """Queue the ``lookahead`` pages after ``page`` when more pages exist."""
        if page_size < 1:
            return False
        total_pages = math.ceil(total_count / page_size)
        next_page = page + 1
        if next_page >= total_pages:
            return False
        return self.enqueue(user_id, folder, next_page, lookahead, page_size)

    async def get(self) -> PrefetchRequest:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop accepting requests. Already queued requests stay queued."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


__all__ = ["PrefetchQueue"]
