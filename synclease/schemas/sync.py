"""
Value types passed between the store, eligibility strategies and jobs.

PriorSyncInfo -> SyncTrigger -> (job) -> SyncResult
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from .log_entry import LogEntry
from .status import SyncTriggerType

if TYPE_CHECKING:
    from synclease.entities import SyncEntityOptions


@dataclass(frozen=True)
class Progress:
    """
    Progress of a running sync.

    Attributes:
        value: Units processed so far (0 <= value <= max)
        max: Total units (> 0)
    """
    value: int
    max: int

    def __post_init__(self):
        if self.max <= 0:
            raise ValueError(f"Progress max must be > 0, got {self.max}")
        if self.value < 0:
            raise ValueError(f"Progress value must be >= 0, got {self.value}")
        if self.value > self.max:
            raise ValueError(
                f"Progress value must not exceed max, got value={self.value} max={self.max}"
            )

    @property
    def percentage(self) -> float:
        """Fraction complete between 0 and 1. Multiply by 100 for display."""
        return self.value / self.max


@dataclass(frozen=True)
class PriorSyncInfo:
    """
    Snapshot of an entity key's terminal history, computed on every acquisition.

    Attributes:
        high_water_mark: Cursor from the newest entry that recorded one
        last_sync_queued_at: Creation time of the newest entry
        last_sync_leased_at: Lease time of the newest entry that actually ran
        last_sync_completed_at: Finish time of the newest ended entry
    """
    high_water_mark: Optional[str] = None
    last_sync_queued_at: Optional[datetime] = None
    last_sync_leased_at: Optional[datetime] = None
    last_sync_completed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.high_water_mark is not None:
            result["high_water_mark"] = self.high_water_mark
        for name in ("last_sync_queued_at", "last_sync_leased_at", "last_sync_completed_at"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value.isoformat()
        return result


@dataclass(frozen=True)
class SyncTrigger:
    """What started this sync and what happened before it."""
    trigger_type: SyncTriggerType
    prior_sync_info: PriorSyncInfo


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome reported by a job.

    Attributes:
        success: Whether the sync succeeded
        message: Optional human-readable outcome
        high_water_mark: Cursor to hand to the next incremental run
        record_count: Number of records processed
        entity: Entity options this result belongs to (set by the orchestrator)
    """
    success: bool
    message: Optional[str] = None
    high_water_mark: Optional[str] = None
    record_count: Optional[int] = None
    entity: Optional["SyncEntityOptions"] = None

    @classmethod
    def failed(cls, message: str, entity: Optional["SyncEntityOptions"] = None) -> "SyncResult":
        return cls(success=False, message=message, entity=entity)


@dataclass(frozen=True)
class AcquireResult:
    """An acquired (or reserved) log entry plus the key's prior-sync snapshot."""
    entry: LogEntry
    prior_sync_info: PriorSyncInfo
