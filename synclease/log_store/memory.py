"""
In-memory LogStore for tests and single-process hosts.

All data is lost when the instance is garbage collected. One lock guards
every operation, so acquisitions are serialized within the process.
"""

import contextlib
import random
import threading
from datetime import datetime
from typing import Iterator, Optional

from synclease.errors import LogEntryNotFoundError
from synclease.schemas import EntityKey, LogEntry, PriorSyncInfo

from .base import ActiveEntryConflict, LogStore, derive_prior_sync_info

# Crockford's Base32 alphabet (excludes I, L, O, U)
ULID_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def generate_ulid(timestamp: datetime) -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    timestamp_ms = int(timestamp.timestamp() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ULID_ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(ULID_ALPHABET) for _ in range(16))

    return timestamp_part + random_part


class InMemoryLogStore(LogStore):
    """
    In-memory implementation of LogStore.

    Entries are kept in insertion order; recency ties on created_at are
    broken by insertion order.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.Lock()
        self._entries: list[LogEntry] = []
        self._index: dict[str, int] = {}

    @contextlib.contextmanager
    def _atomic(self) -> Iterator[None]:
        with self._lock:
            yield None

    _read = _atomic

    def _newest_first(self, key: Optional[EntityKey] = None) -> list[LogEntry]:
        entries = [e for e in reversed(self._entries) if key is None or e.key == key]
        # Stable sort keeps later insertions first among equal created_at
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    def _find_active(self, txn, key: EntityKey) -> Optional[LogEntry]:
        for entry in self._newest_first(key):
            if entry.is_active:
                return entry.copy()
        return None

    def _get(self, txn, entry_id: str) -> Optional[LogEntry]:
        index = self._index.get(entry_id)
        if index is None:
            return None
        return self._entries[index].copy()

    def _insert(self, txn, entry: LogEntry) -> LogEntry:
        if self._find_active(txn, entry.key) is not None:
            raise ActiveEntryConflict(f"Active entry already exists for {tuple(entry.key)}")

        entry_id = generate_ulid(entry.created_at)
        while entry_id in self._index:
            entry_id = generate_ulid(entry.created_at)

        stored = entry.copy()
        stored.id = entry_id
        self._index[entry_id] = len(self._entries)
        self._entries.append(stored)
        return stored.copy()

    def _save(self, txn, entry: LogEntry) -> None:
        index = self._index.get(entry.id)
        if index is None:
            raise LogEntryNotFoundError(f"Log entry '{entry.id}' not found")
        self._entries[index] = entry.copy()

    def _prior_sync_info(self, txn, key: EntityKey) -> PriorSyncInfo:
        return derive_prior_sync_info(e for e in self._newest_first(key) if not e.is_active)

    def list_entries(self, entity: Optional[str] = None, limit: int = 50) -> list[LogEntry]:
        with self._lock:
            entries = self._newest_first()
            if entity is not None:
                entries = [e for e in entries if e.entity == entity]
            return [e.copy() for e in entries[:limit]]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
