"""
LogEntry schema - one row of sync history for an entity key.

A LogEntry is created (or an expired one recycled) only inside a lease
acquisition. The acquiring orchestration run then mutates its copy
(progress, then terminal status and result fields) and writes it back
through the store. Entries are never deleted by synclease.
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any, NamedTuple, Optional

from .status import SyncStatus, SyncTriggerType


class EntityKey(NamedTuple):
    """The unit of mutual exclusion and history: (entity, parameters_json, schema_version)."""
    entity: str
    parameters_json: Optional[str]
    schema_version: Optional[int]


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class LogEntry:
    """
    A record of one sync attempt for an entity key.

    The store owns the persisted copy; callers always receive a copy, so
    mutating a LogEntry has no effect until it is passed to
    ``LogStore.update_log_entry``.

    Attributes:
        id: Store-assigned identifier (string form)
        entity: Entity name
        parameters_json: Canonical parameter JSON, None when no parameters
        schema_version: Entity schema version, None when unversioned
        trigger_type: Trigger that created the entry
        status: Current SyncStatus
        created_at: When the entry was created
        leased_at / leased_by / lease_expires_at: Current lease, if any
        queued_at / queue_message_id: Fan-out bookkeeping
        finished_at / result_message / high_water_mark / record_count: Outcome
        progress_value / progress_max: Latest reported progress
    """
    id: str
    entity: str
    parameters_json: Optional[str]
    schema_version: Optional[int]
    trigger_type: SyncTriggerType
    status: SyncStatus
    created_at: datetime
    leased_at: Optional[datetime] = None
    leased_by: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    queue_message_id: Optional[str] = None
    finished_at: Optional[datetime] = None
    result_message: Optional[str] = None
    high_water_mark: Optional[str] = None
    record_count: Optional[int] = None
    progress_value: Optional[int] = None
    progress_max: Optional[int] = None

    @property
    def key(self) -> EntityKey:
        return EntityKey(self.entity, self.parameters_json, self.schema_version)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_leased(self) -> bool:
        return self.leased_at is not None

    def lease_expired(self, now: datetime) -> bool:
        """True if the entry carries a lease whose expiry is in the past."""
        return self.lease_expires_at is not None and self.lease_expires_at < now

    @property
    def progress_percentage(self) -> Optional[float]:
        """
        Progress as a fraction between 0 and 1.

        None if no progress value was reported or progress_max is not positive.
        """
        if self.progress_value is None or self.progress_max is None or self.progress_max <= 0:
            return None
        return self.progress_value / self.progress_max

    def copy(self) -> "LogEntry":
        """Return an independent copy (all fields are immutable values)."""
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "id": self.id,
            "entity": self.entity,
            "trigger_type": self.trigger_type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }
        if self.parameters_json is not None:
            result["parameters_json"] = self.parameters_json
        if self.schema_version is not None:
            result["schema_version"] = self.schema_version
        for name in ("leased_at", "lease_expires_at", "queued_at", "finished_at"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value.isoformat()
        for name in (
            "leased_by",
            "queue_message_id",
            "result_message",
            "high_water_mark",
            "record_count",
            "progress_value",
            "progress_max",
        ):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        """Deserialize from dictionary."""
        return cls(
            id=str(data["id"]),
            entity=data["entity"],
            parameters_json=data.get("parameters_json"),
            schema_version=data.get("schema_version"),
            trigger_type=SyncTriggerType(data["trigger_type"]),
            status=SyncStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            leased_at=_dt(data.get("leased_at")),
            leased_by=data.get("leased_by"),
            lease_expires_at=_dt(data.get("lease_expires_at")),
            queued_at=_dt(data.get("queued_at")),
            queue_message_id=data.get("queue_message_id"),
            finished_at=_dt(data.get("finished_at")),
            result_message=data.get("result_message"),
            high_water_mark=data.get("high_water_mark"),
            record_count=data.get("record_count"),
            progress_value=data.get("progress_value"),
            progress_max=data.get("progress_max"),
        )
