"""
synclease.schemas - Data structures shared across synclease.

Lifecycle of a sync:
1. acquire: the log store leases a LogEntry and derives PriorSyncInfo
2. trigger: SyncTrigger (trigger type + PriorSyncInfo) is built
3. eligibility: the entity's strategy inspects the trigger
4. run: the job receives the trigger and reports Progress
5. finalize: the job's SyncResult decides the entry's terminal SyncStatus
"""

from .status import (
    ACTIVE_STATUSES,
    AcquireLeaseBehavior,
    QueueBehavior,
    SyncStatus,
    SyncTriggerType,
)
from .log_entry import (
    EntityKey,
    LogEntry,
)
from .sync import (
    AcquireResult,
    PriorSyncInfo,
    Progress,
    SyncResult,
    SyncTrigger,
)

__all__ = [
    # Enums
    "ACTIVE_STATUSES",
    "AcquireLeaseBehavior",
    "QueueBehavior",
    "SyncStatus",
    "SyncTriggerType",
    # Log entry
    "EntityKey",
    "LogEntry",
    # Sync values
    "AcquireResult",
    "PriorSyncInfo",
    "Progress",
    "SyncResult",
    "SyncTrigger",
]
