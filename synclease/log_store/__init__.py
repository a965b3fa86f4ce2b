"""Log store backends."""

from .base import DEFAULT_LEASE_DURATION, LogStore, derive_prior_sync_info
from .memory import InMemoryLogStore
from .sqlite import SqliteLogStore

__all__ = [
    "DEFAULT_LEASE_DURATION",
    "InMemoryLogStore",
    "LogStore",
    "SqliteLogStore",
    "derive_prior_sync_info",
]
