"""Prefetch request contract and the mail service it warms."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, List, Optional, Protocol, Union


class MailFolder(str, Enum):
    """Folders the worker knows how to warm."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    DELETED = "deleted"
    ARCHIVE = "archive"
    JUNK = "junk"

    @classmethod
    def parse(cls, value: str) -> Optional["MailFolder"]:
        """Case-insensitive lookup; ``None`` for an unknown folder."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class PrefetchRequest:
    """Warm ``page_count`` pages of ``folder`` starting at ``start_page``."""

    user_id: str
    folder: str
    start_page: int
    page_count: int
    page_size: int

    def pages(self) -> range:
        return range(self.start_page, self.start_page + max(self.page_count, 0))


PageResult = Union[List[Any], Awaitable[List[Any]]]


class MailService(Protocol):
    """Folder listing calls; each may be sync or async."""

    def get_inbox(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...

    def get_sent(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...

    def get_drafts(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...

    def get_deleted(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...

    def get_archive(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...

    def get_junk(self, user_id: str, page: int, page_size: int) -> PageResult:
        ...


__all__ = ["MailFolder", "MailService", "PageResult", "PrefetchRequest"]
