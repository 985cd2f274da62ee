"""Background prefetch of adjacent mail folder pages."""

from .models import MailFolder, MailService, PrefetchRequest
from .queue import PrefetchQueue
from .worker import PrefetchWorker

__all__ = [
    "MailFolder",
    "MailService",
    "PrefetchQueue",
    "PrefetchRequest",
    "PrefetchWorker",
]
