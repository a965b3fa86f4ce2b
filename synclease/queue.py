"""
SyncQueueService - fan-out of sync work to external workers.

Phase 1, ``create_all_queued_sync_entries``: reserve a pending entry per
entity without leasing it and stamp queued_at. The caller publishes one
message per returned entry on its transport.

Phase 2, ``record_queue_message_id``: store the transport's message id on
the entry for correlation. A caller that crashes between the phases leaves
an entry without a message id; nothing recovers it automatically.

Workers pick entries up with ``SyncService.sync_queued_entry``.
"""

import logging
import threading
from typing import Optional

from synclease.cancellation import is_cancelled
from synclease.clock import Clock, utcnow
from synclease.entities import EntityResolver, SyncEntityOptions
from synclease.errors import LogEntryNotFoundError
from synclease.log_store import LogStore
from synclease.schemas import (
    AcquireLeaseBehavior,
    LogEntry,
    QueueBehavior,
    SyncStatus,
    SyncTrigger,
    SyncTriggerType,
)
from synclease.service import NOT_ELIGIBLE_MESSAGE
from synclease.utils import log_context

logger = logging.getLogger(__name__)


class SyncQueueService:
    """
    Creates queued log entries for distributed consumption.

    Args:
        store: LogStore shared with the workers
        resolver: EntityResolver supplying the entity list
        clock: Returns the current UTC time
    """

    def __init__(self, store: LogStore, resolver: EntityResolver, clock: Clock = utcnow):
        self.store = store
        self.resolver = resolver
        self._clock = clock

    def create_all_queued_sync_entries(
        self,
        trigger_type: SyncTriggerType,
        behavior: QueueBehavior = QueueBehavior.QUEUE_ALL,
        cancellation: Optional[threading.Event] = None,
    ) -> list[LogEntry]:
        """
        Reserve one pending entry per entity.

        An entity whose active entry is currently leased is left out. An
        unleased active entry (queued earlier but never picked up) is
        returned again with a fresh queued_at.

        Args:
            trigger_type: Trigger recorded on new entries
            behavior: QUEUE_ALL, or QUEUE_ELIGIBLE_ONLY to evaluate eligibility
                now and finalize ineligible reservations as skipped
            cancellation: Optional cancellation signal

        Returns:
            Queued entries in entity order
        """
        entities = self.resolver.resolve_entities(cancellation)
        queued: list[LogEntry] = []

        for entity in entities:
            if is_cancelled(cancellation):
                logger.warning(f"Queueing cancelled after {len(queued)} of {len(entities)} entities")
                break
            try:
                entry = self._queue_entity(trigger_type, entity, behavior, cancellation)
            except Exception as e:
                logger.error(f"Error queueing {entity.describe()}: {e}", extra=log_context(entity))
                continue
            if entry is not None:
                queued.append(entry)

        logger.info(f"Queued {len(queued)} of {len(entities)} entities (trigger: {trigger_type.value})")
        return queued

    def _queue_entity(
        self,
        trigger_type: SyncTriggerType,
        entity: SyncEntityOptions,
        behavior: QueueBehavior,
        cancellation: Optional[threading.Event],
    ) -> Optional[LogEntry]:
        acquired = self.store.acquire_lease(
            trigger_type,
            entity,
            AcquireLeaseBehavior.DO_NOT_ACQUIRE,
            cancellation=cancellation,
        )
        if acquired is None:
            logger.debug(f"{entity.describe()} is currently leased; not queueing")
            return None

        entry = acquired.entry
        now = self._clock()

        if (
            behavior == QueueBehavior.QUEUE_ELIGIBLE_ONLY
            and trigger_type != SyncTriggerType.MANUAL
        ):
            trigger = SyncTrigger(trigger_type=trigger_type, prior_sync_info=acquired.prior_sync_info)
            if not entity.eligibility.is_eligible_to_sync(trigger, entity):
                logger.debug(
                    f"{entity.describe()} is not eligible for sync; not queueing",
                    extra=log_context(entity, entry),
                )
                entry.status = SyncStatus.SKIPPED
                entry.result_message = NOT_ELIGIBLE_MESSAGE
                entry.finished_at = now
                self.store.update_log_entry(entry)
                return None

        entry.status = SyncStatus.PENDING
        entry.queued_at = now
        self.store.update_log_entry(entry)
        logger.debug(f"Queued entry {entry.id} for {entity.describe()}", extra=log_context(entity, entry))
        return entry

    def record_queue_message_id(
        self,
        entry_id: str,
        message_id: str,
        cancellation: Optional[threading.Event] = None,
    ) -> LogEntry:
        """
        Associate a transport message id with a queued entry.

        Returns:
            The updated entry

        Raises:
            ValueError: If either argument is blank
            LogEntryNotFoundError: If the entry id is unknown
        """
        if not entry_id or not entry_id.strip():
            raise ValueError("entry_id must not be blank")
        if not message_id or not message_id.strip():
            raise ValueError("message_id must not be blank")

        entry = self.store.find_by_id(entry_id, cancellation)
        if entry is None:
            raise LogEntryNotFoundError(f"Log entry '{entry_id}' not found")

        entry.queue_message_id = message_id
        self.store.update_log_entry(entry, cancellation)
        return entry
