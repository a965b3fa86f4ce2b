"""
Enumerations shared by the log store, orchestrator and fan-out service.

Values are stable strings; they are persisted as-is by the SQLite store.
"""

from enum import Enum


class SyncStatus(str, Enum):
    """Status of a sync log entry."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    LEASE_EXPIRED = "lease_expired"
    SKIPPED = "skipped"

    @property
    def is_active(self) -> bool:
        """Pending and in-progress entries occupy the entity key's active slot."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


ACTIVE_STATUSES = frozenset({SyncStatus.PENDING, SyncStatus.IN_PROGRESS})


class SyncTriggerType(str, Enum):
    """What initiated a sync operation."""
    CUSTOM = "custom"
    TIMER = "timer"
    MANUAL = "manual"


class AcquireLeaseBehavior(str, Enum):
    """
    How lease acquisition treats the entity key's active entry.

    DO_NOT_ACQUIRE: Create or reserve the entry but leave it unleased, so a
        worker can claim it later. Fails if the entry is already leased.
    ACQUIRE_IF_NOT_LEASED: Lease the entry unless someone else holds it.
    FORCE_ACQUIRE: Lease the entry regardless of the current holder.
    """
    DO_NOT_ACQUIRE = "do_not_acquire"
    ACQUIRE_IF_NOT_LEASED = "acquire_if_not_leased"
    FORCE_ACQUIRE = "force_acquire"


class QueueBehavior(str, Enum):
    """Which entities the fan-out service creates queued entries for."""
    QUEUE_ALL = "queue_all"
    QUEUE_ELIGIBLE_ONLY = "queue_eligible_only"
