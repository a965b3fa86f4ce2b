"""
synclease - Lease-based sync job coordinator

Runs idempotent per-entity sync jobs with at most one concurrent execution
per entity key, keeping the sync history needed for incremental syncs.
Supports local periodic execution and fan-out to queue workers.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = [
    "AlwaysEligible",
    "EntitySync",
    "IntervalEligibility",
    "JobRegistry",
    "SyncEntityOptions",
    "SyncQueueService",
    "SyncResult",
    "SyncService",
    "SyncTriggerType",
    "load_config",
]

from .config import load_config
from .eligibility import AlwaysEligible, IntervalEligibility
from .entities import SyncEntityOptions
from .job import EntitySync
from .queue import SyncQueueService
from .registry import JobRegistry
from .schemas import SyncResult, SyncTriggerType
from .service import SyncService
