"""
SyncService - the orchestration state machine.

For one entity:
1. Acquire a lease (contention returns None)
2. Check eligibility for non-manual triggers (ineligible entries end skipped)
3. Resolve the job through the JobRegistry
4. Mark the entry in_progress and run the job with a progress reporter
5. Finalize completed or failed from the job's SyncResult
6. Return the SyncResult

For a batch, every entity is processed independently: any exception while
processing one entity is logged and reported as a failed SyncResult, and the
batch moves on to the next entity.
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from synclease.cancellation import is_cancelled
from synclease.clock import Clock, utcnow
from synclease.entities import EntityResolver, SyncEntityOptions
from synclease.errors import (
    ConfigurationError,
    EntityMismatchError,
    LogEntryNotFoundError,
    LogStoreError,
)
from synclease.job import ProgressReporter
from synclease.log_store import LogStore
from synclease.registry import JobRegistry
from synclease.schemas import (
    AcquireResult,
    LogEntry,
    Progress,
    SyncResult,
    SyncStatus,
    SyncTrigger,
    SyncTriggerType,
)
from synclease.utils import log_context

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "The sync was successful"
FAILURE_MESSAGE = "The sync failed"
CANCELLED_MESSAGE = "The sync was cancelled"
NOT_ELIGIBLE_MESSAGE = "Entity is not eligible for sync"


class SyncService:
    """
    Runs sync jobs for entities under lease.

    Args:
        store: LogStore shared by every orchestrator instance
        registry: JobRegistry resolving entity job identifiers
        resolver: EntityResolver supplying the entity list for batches
        clock: Returns the current UTC time (finished_at stamps)
        max_workers: Run batch entities on a thread pool of this size;
            sequential when None or 1
    """

    def __init__(
        self,
        store: LogStore,
        registry: JobRegistry,
        resolver: EntityResolver,
        clock: Clock = utcnow,
        max_workers: Optional[int] = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.store = store
        self.registry = registry
        self.resolver = resolver
        self.max_workers = max_workers
        self._clock = clock

    # -------------------------------------------------------------------------
    # Single entity
    # -------------------------------------------------------------------------

    def sync_entity_if_eligible(
        self,
        trigger_type: SyncTriggerType,
        entity: SyncEntityOptions,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[SyncResult]:
        """
        Sync one entity if its lease can be acquired and it is eligible.

        Args:
            trigger_type: What triggered the sync (manual bypasses eligibility)
            entity: Entity options
            cancellation: Optional cancellation signal, also handed to the job

        Returns:
            The job's SyncResult (success or failure), or None on contention
            or ineligibility

        Raises:
            LogStoreError: If the store fails for this entity
            ConfigurationError: If no job is registered for the entity
            Exception: Whatever the eligibility strategy raised; the entry is
                finalized failed first
            SyncCancelledError: If cancelled before the lease was acquired
        """
        acquired = self.store.acquire_lease(trigger_type, entity, cancellation=cancellation)
        if acquired is None:
            logger.debug(f"Could not acquire lease for {entity.describe()}; it is already leased")
            return None

        return self._run_acquired(trigger_type, entity, acquired, cancellation)

    def sync_queued_entry(
        self,
        entry_id: str,
        trigger_type: Optional[SyncTriggerType] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> Optional[SyncResult]:
        """
        Run a previously queued log entry (worker side of the fan-out).

        The entity options are located among the resolved entities by the
        entry's key, the entry is resumed with ``acquire_existing`` and then
        runs through the same eligibility, job and finalization path.

        Args:
            entry_id: Id of the queued entry (e.g. from the queue message)
            trigger_type: Trigger to run under; defaults to the entry's own
            cancellation: Optional cancellation signal

        Returns:
            SyncResult, or None if the entry is already leased, finished or
            expired, or the entity is not eligible

        Raises:
            LogEntryNotFoundError: If the entry id is unknown
            EntityMismatchError: If no configured entity matches the entry's key
        """
        entry = self.store.find_by_id(entry_id, cancellation)
        if entry is None:
            raise LogEntryNotFoundError(f"Log entry '{entry_id}' not found")

        entity = self._entity_for_entry(entry, cancellation)
        acquired = self.store.acquire_existing(entry, entity, cancellation=cancellation)
        if acquired is None:
            logger.debug(f"Queued entry {entry_id} for {entity.describe()} cannot be resumed")
            return None

        return self._run_acquired(trigger_type or entry.trigger_type, entity, acquired, cancellation)

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def sync_all_eligible(
        self,
        trigger_type: SyncTriggerType,
        cancellation: Optional[threading.Event] = None,
    ) -> list[SyncResult]:
        """
        Sync every configured and provided entity.

        Returns:
            SyncResults in entity order; entities that hit contention or were
            ineligible have no result, entities that raised have a failed one
        """
        entities = self.resolver.resolve_entities(cancellation)
        logger.info(f"Syncing {len(entities)} entities (trigger: {trigger_type.value})")

        def run(entity: SyncEntityOptions) -> Optional[SyncResult]:
            return self._sync_isolated(trigger_type, entity, cancellation)

        if self.max_workers and self.max_workers > 1 and len(entities) > 1:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="synclease"
            ) as executor:
                outcomes = list(executor.map(run, entities))
        else:
            outcomes = [run(entity) for entity in entities]

        results = [result for result in outcomes if result is not None]
        succeeded = sum(1 for result in results if result.success)
        logger.info(
            f"Sync pass complete: {succeeded} succeeded, {len(results) - succeeded} failed, "
            f"{len(entities) - len(results)} not run"
        )
        return results

    def _sync_isolated(
        self,
        trigger_type: SyncTriggerType,
        entity: SyncEntityOptions,
        cancellation: Optional[threading.Event],
    ) -> Optional[SyncResult]:
        if is_cancelled(cancellation):
            logger.debug(f"Sync pass cancelled before {entity.describe()}")
            return None
        try:
            return self.sync_entity_if_eligible(trigger_type, entity, cancellation)
        except Exception as e:
            logger.error(f"FAIL {entity.describe()}: {e}", exc_info=True, extra=log_context(entity))
            return SyncResult.failed(str(e) or type(e).__name__, entity=entity)

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _run_acquired(
        self,
        trigger_type: SyncTriggerType,
        entity: SyncEntityOptions,
        acquired: AcquireResult,
        cancellation: Optional[threading.Event],
    ) -> Optional[SyncResult]:
        entry = acquired.entry
        trigger = SyncTrigger(trigger_type=trigger_type, prior_sync_info=acquired.prior_sync_info)

        if trigger_type != SyncTriggerType.MANUAL:
            try:
                eligible = entity.eligibility.is_eligible_to_sync(trigger, entity)
            except Exception as e:
                logger.error(
                    f"Eligibility check failed for {entity.describe()}: {e}",
                    extra=log_context(entity, entry),
                )
                self._finalize(entry, SyncStatus.FAILED, str(e) or type(e).__name__)
                raise
            if not eligible:
                logger.debug(
                    f"{entity.describe()} is not eligible for sync ({entity.eligibility!r})",
                    extra=log_context(entity, entry),
                )
                self._finalize(entry, SyncStatus.SKIPPED, NOT_ELIGIBLE_MESSAGE)
                return None

        try:
            job = self.registry.resolve(entity)
        except ConfigurationError as e:
            logger.error(
                f"Cannot resolve job for {entity.describe()}: {e}", extra=log_context(entity, entry)
            )
            self._finalize(entry, SyncStatus.FAILED, str(e))
            raise

        logger.info(
            f"{entity.describe()} is eligible for sync; running {entity.job} (entry {entry.id})",
            extra=log_context(entity, entry),
        )
        entry.status = SyncStatus.IN_PROGRESS
        self.store.update_log_entry(entry)

        report_progress, progress_failures = self._progress_reporter(entry)
        try:
            result = job.run(trigger, entity, report_progress, cancellation)
        except Exception as e:
            result = self._failure_from_exception(entity, e, cancellation)

        if progress_failures:
            raise LogStoreError(
                f"Progress update failed for {entity.describe()} (entry {entry.id})"
            ) from progress_failures[0]

        if not isinstance(result, SyncResult):
            logger.warning(
                f"Job {entity.job} returned {type(result).__name__} instead of SyncResult"
            )
            result = SyncResult.failed(
                f"{FAILURE_MESSAGE}: job returned {type(result).__name__} instead of SyncResult"
            )

        if result.success:
            status = SyncStatus.COMPLETED
            message = result.message or SUCCESS_MESSAGE
            logger.info(
                f"{entity.describe()} sync completed: {message}", extra=log_context(entity, entry)
            )
        else:
            status = SyncStatus.FAILED
            message = result.message or FAILURE_MESSAGE
            logger.warning(
                f"{entity.describe()} sync failed: {message}", extra=log_context(entity, entry)
            )

        self._finalize(
            entry,
            status,
            message,
            high_water_mark=result.high_water_mark,
            record_count=result.record_count,
        )
        return dataclasses.replace(result, message=message, entity=entity)

    def _failure_from_exception(
        self,
        entity: SyncEntityOptions,
        error: Exception,
        cancellation: Optional[threading.Event],
    ) -> SyncResult:
        detail = str(error) or type(error).__name__
        if is_cancelled(cancellation):
            logger.warning(f"{entity.describe()} sync cancelled: {detail}")
            return SyncResult.failed(f"{CANCELLED_MESSAGE}: {detail}")

        logger.error(f"{entity.describe()} sync raised: {detail}", exc_info=True)
        return SyncResult.failed(detail)

    def _progress_reporter(
        self, entry: LogEntry
    ) -> tuple[ProgressReporter, list[LogStoreError]]:
        """
        Build the progress callback for one run.

        Each report validates the values and writes them through before
        returning. Write failures are re-raised into the job and remembered,
        so the run is aborted even if the job swallows them.
        """
        failures: list[LogStoreError] = []
        lock = threading.Lock()

        def report_progress(value: int, max_value: int) -> None:
            progress = Progress(value, max_value)
            with lock:
                entry.progress_value = progress.value
                entry.progress_max = progress.max
                try:
                    self.store.update_log_entry(entry)
                except LogStoreError as e:
                    failures.append(e)
                    raise

        return report_progress, failures

    def _finalize(
        self,
        entry: LogEntry,
        status: SyncStatus,
        message: str,
        high_water_mark: Optional[str] = None,
        record_count: Optional[int] = None,
    ) -> None:
        entry.status = status
        entry.result_message = message
        entry.high_water_mark = high_water_mark
        entry.record_count = record_count
        entry.finished_at = self._clock()
        self.store.update_log_entry(entry)

    def _entity_for_entry(
        self, entry: LogEntry, cancellation: Optional[threading.Event]
    ) -> SyncEntityOptions:
        for entity in self.resolver.resolve_entities(cancellation):
            if entity.key == entry.key:
                return entity
        raise EntityMismatchError(
            f"No configured entity matches log entry {entry.id} "
            f"(entity={entry.entity}, parameters={entry.parameters_json}, "
            f"schema_version={entry.schema_version})"
        )
