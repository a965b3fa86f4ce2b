"""
LogStore - durable sync history with lease semantics.

The LogStore manages LogEntries keyed by entity key
(entity, parameters_json, schema_version). At most one entry per key is
active (pending or in_progress) at any time. Lease acquisition is the only
mutual-exclusion point in synclease: reading the active entry, expiring an
overdue lease, creating or re-leasing the entry and deriving PriorSyncInfo
all happen inside one critical section per call.

Storage backends implement the primitives (``_atomic``, ``_read``, ``_find_active``,
``_get``, ``_insert``, ``_save``, ``_prior_sync_info``, ``list_entries``):
- InMemoryLogStore (single process, tests)
- SqliteLogStore (durable, multi-process)

Every LogEntry returned by a store is a copy. Mutating it has no effect
until it is passed back to ``update_log_entry``.
"""

import logging
import socket
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, ContextManager, Iterable, Optional

from synclease.cancellation import raise_if_cancelled
from synclease.clock import Clock, utcnow
from synclease.errors import EntityMismatchError, LogEntryNotFoundError, StaleLogEntryError
from synclease.schemas import (
    AcquireLeaseBehavior,
    AcquireResult,
    EntityKey,
    LogEntry,
    PriorSyncInfo,
    SyncStatus,
    SyncTriggerType,
)

if TYPE_CHECKING:
    from synclease.entities import SyncEntityOptions

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = timedelta(days=1)


class ActiveEntryConflict(Exception):
    """Raised by a backend when inserting would create a second active entry for a key."""
    pass


def default_machine_id() -> str:
    """Identifier recorded as ``leased_by``; the host name by default."""
    return socket.gethostname()


def derive_prior_sync_info(history: Iterable[LogEntry]) -> PriorSyncInfo:
    """
    Derive PriorSyncInfo from an entity key's terminal history.

    Args:
        history: Terminal entries for one key, newest first

    Returns:
        PriorSyncInfo where:
        - high_water_mark comes from the newest entry that recorded one
        - last_sync_queued_at is the newest entry's created_at
        - last_sync_leased_at comes from the newest entry that ran
          (skipped entries were leased only to be checked, not run)
        - last_sync_completed_at is the newest finished_at of any ended entry
    """
    high_water_mark = None
    queued_at = None
    leased_at = None
    completed_at = None

    for entry in history:
        if queued_at is None:
            queued_at = entry.created_at
        if high_water_mark is None and entry.high_water_mark is not None:
            high_water_mark = entry.high_water_mark
        if (
            leased_at is None
            and entry.leased_at is not None
            and entry.status != SyncStatus.SKIPPED
        ):
            leased_at = entry.leased_at
        if completed_at is None and entry.finished_at is not None:
            completed_at = entry.finished_at

    return PriorSyncInfo(
        high_water_mark=high_water_mark,
        last_sync_queued_at=queued_at,
        last_sync_leased_at=leased_at,
        last_sync_completed_at=completed_at,
    )


class LogStore(ABC):
    """
    Abstract base class for sync log storage.

    Args:
        machine_id: Recorded as leased_by on acquired entries
        default_lease_duration: Lease length when the entity has no override
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        machine_id: Optional[str] = None,
        default_lease_duration: timedelta = DEFAULT_LEASE_DURATION,
        clock: Clock = utcnow,
    ):
        if default_lease_duration <= timedelta(0):
            raise ValueError(f"default_lease_duration must be positive, got {default_lease_duration}")
        self._machine_id = machine_id or default_machine_id()
        self._default_lease_duration = default_lease_duration
        self._clock = clock

    @property
    def machine_id(self) -> str:
        return self._machine_id

    @property
    def default_lease_duration(self) -> timedelta:
        return self._default_lease_duration

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    def acquire_lease(
        self,
        trigger_type: SyncTriggerType,
        entity: "SyncEntityOptions",
        behavior: AcquireLeaseBehavior = AcquireLeaseBehavior.ACQUIRE_IF_NOT_LEASED,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[AcquireResult]:
        """
        Acquire (or reserve) the active log entry for an entity key.

        An active entry whose lease is overdue is marked lease_expired and
        the slot treated as free. A leased active entry blocks acquisition
        unless behavior is FORCE_ACQUIRE. An unleased active entry (e.g. one
        created by the fan-out service) is reused. Otherwise a new pending
        entry is created. Lease fields are stamped unless behavior is
        DO_NOT_ACQUIRE.

        Args:
            trigger_type: Trigger recorded on a newly created entry
            entity: Entity options identifying the key
            behavior: Lease behavior
            cancellation: Optional cancellation signal

        Returns:
            AcquireResult with a copy of the entry and the key's PriorSyncInfo,
            or None if the entry is leased by someone else

        Raises:
            LogStoreError: If the backend fails
            SyncCancelledError: If cancellation was requested
        """
        raise_if_cancelled(cancellation, "acquire_lease")
        key = entity.key

        try:
            with self._atomic() as txn:
                now = self._clock()
                entry = self._find_active(txn, key)

                if entry is not None and entry.lease_expired(now):
                    self._expire(txn, entry)
                    entry = None
                elif (
                    entry is not None
                    and entry.is_leased
                    and behavior != AcquireLeaseBehavior.FORCE_ACQUIRE
                ):
                    logger.debug(
                        f"Log entry {entry.id} for {entity.describe()} is leased by "
                        f"{entry.leased_by} until {entry.lease_expires_at}"
                    )
                    return None

                prior_sync_info = self._prior_sync_info(txn, key)

                if entry is None:
                    entry = LogEntry(
                        id="",
                        entity=key.entity,
                        parameters_json=key.parameters_json,
                        schema_version=key.schema_version,
                        trigger_type=trigger_type,
                        status=SyncStatus.PENDING,
                        created_at=now,
                    )
                    if behavior != AcquireLeaseBehavior.DO_NOT_ACQUIRE:
                        self._stamp_lease(entry, entity, now)
                    entry = self._insert(txn, entry)
                elif behavior != AcquireLeaseBehavior.DO_NOT_ACQUIRE:
                    self._stamp_lease(entry, entity, now)
                    self._save(txn, entry)

                return AcquireResult(entry=entry.copy(), prior_sync_info=prior_sync_info)
        except ActiveEntryConflict:
            logger.debug(f"Another acquirer created the active entry for {entity.describe()}")
            return None

    def acquire_existing(
        self,
        entry: LogEntry,
        entity: "SyncEntityOptions",
        behavior: AcquireLeaseBehavior = AcquireLeaseBehavior.ACQUIRE_IF_NOT_LEASED,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[AcquireResult]:
        """
        Acquire a specific entry, e.g. one a worker picked up from a queue.

        Args:
            entry: The entry to resume (only its id and key are used)
            entity: Entity options the entry must belong to
            behavior: Lease behavior
            cancellation: Optional cancellation signal

        Returns:
            AcquireResult, or None if the entry is no longer active, its lease
            expired (it is marked lease_expired), or it is leased by someone else

        Raises:
            EntityMismatchError: If the entry's key does not match entity.key
            LogEntryNotFoundError: If the entry id is unknown
            LogStoreError: If the backend fails
        """
        raise_if_cancelled(cancellation, "acquire_existing")
        key = entity.key
        self._check_key(entry, key)

        with self._atomic() as txn:
            stored = self._get(txn, entry.id)
            if stored is None:
                raise LogEntryNotFoundError(f"Log entry '{entry.id}' not found")
            self._check_key(stored, key)

            now = self._clock()
            if not stored.is_active:
                logger.debug(
                    f"Log entry {stored.id} for {entity.describe()} is already "
                    f"{stored.status.value}; nothing to resume"
                )
                return None
            if stored.lease_expired(now):
                self._expire(txn, stored)
                return None
            if stored.is_leased and behavior != AcquireLeaseBehavior.FORCE_ACQUIRE:
                logger.debug(f"Log entry {stored.id} is leased by {stored.leased_by}")
                return None

            prior_sync_info = self._prior_sync_info(txn, key)

            if behavior != AcquireLeaseBehavior.DO_NOT_ACQUIRE:
                self._stamp_lease(stored, entity, now)
                self._save(txn, stored)

            return AcquireResult(entry=stored.copy(), prior_sync_info=prior_sync_info)

    def update_log_entry(
        self,
        entry: LogEntry,
        cancellation: Optional[threading.Event] = None,
    ) -> None:
        """
        Persist an entry's mutable fields.

        An entry that has already ended (e.g. marked lease_expired by another
        acquirer) cannot be written back as pending or in_progress.

        Raises:
            LogEntryNotFoundError: If the entry was not created by this store
            StaleLogEntryError: If the write would reactivate an ended entry
            LogStoreError: If the backend fails
        """
        raise_if_cancelled(cancellation, "update_log_entry")
        with self._atomic() as txn:
            stored = self._get(txn, entry.id)
            if stored is None:
                raise LogEntryNotFoundError(f"Log entry '{entry.id}' not found for update")
            if entry.is_active and not stored.is_active:
                raise StaleLogEntryError(
                    f"Log entry {entry.id} ({entry.entity}) is already {stored.status.value}; "
                    f"refusing to set it {entry.status.value}"
                )
            self._save(txn, entry.copy())

    def find_by_id(
        self,
        entry_id: str,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[LogEntry]:
        """
        Look up an entry by id.

        Returns:
            A copy of the entry, or None if not found
        """
        raise_if_cancelled(cancellation, "find_by_id")
        with self._read() as txn:
            return self._get(txn, entry_id)

    @abstractmethod
    def list_entries(self, entity: Optional[str] = None, limit: int = 50) -> list[LogEntry]:
        """
        List entries newest first.

        Args:
            entity: Only entries for this entity name
            limit: Maximum number of entries

        Returns:
            Copies of the matching entries
        """
        pass

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def lease_duration_for(self, entity: "SyncEntityOptions") -> timedelta:
        return entity.lease_duration or self._default_lease_duration

    def _stamp_lease(self, entry: LogEntry, entity: "SyncEntityOptions", now: datetime) -> None:
        entry.leased_at = now
        entry.leased_by = self._machine_id
        entry.lease_expires_at = now + self.lease_duration_for(entity)

    def _expire(self, txn: Any, entry: LogEntry) -> None:
        logger.warning(
            f"Lease expired for log entry {entry.id} ({entry.entity}, leased by "
            f"{entry.leased_by} until {entry.lease_expires_at}). Marking lease_expired."
        )
        entry.status = SyncStatus.LEASE_EXPIRED
        self._save(txn, entry)

    @staticmethod
    def _check_key(entry: LogEntry, key: EntityKey) -> None:
        if entry.key != key:
            raise EntityMismatchError(
                f"Log entry {entry.id} belongs to {tuple(entry.key)}, "
                f"which does not match entity options {tuple(key)}"
            )

    # -------------------------------------------------------------------------
    # Backend primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def _atomic(self) -> ContextManager[Any]:
        """Critical section; yields a backend transaction handle."""
        pass

    @abstractmethod
    def _read(self) -> ContextManager[Any]:
        """Read-only access; yields a handle usable with ``_get``."""
        pass

    @abstractmethod
    def _find_active(self, txn: Any, key: EntityKey) -> Optional[LogEntry]:
        """Copy of the key's pending/in_progress entry, if any."""
        pass

    @abstractmethod
    def _get(self, txn: Any, entry_id: str) -> Optional[LogEntry]:
        """Copy of the entry with this id, if any."""
        pass

    @abstractmethod
    def _insert(self, txn: Any, entry: LogEntry) -> LogEntry:
        """
        Store a new entry and return a copy carrying its assigned id.

        Raises:
            ActiveEntryConflict: If the key already has an active entry
        """
        pass

    @abstractmethod
    def _save(self, txn: Any, entry: LogEntry) -> None:
        """Overwrite the stored entry with the same id."""
        pass

    @abstractmethod
    def _prior_sync_info(self, txn: Any, key: EntityKey) -> PriorSyncInfo:
        """PriorSyncInfo from the key's terminal history (see derive_prior_sync_info)."""
        pass
