"""
Job protocol - the unit of work the orchestrator runs for an entity.

A job receives:
- trigger: trigger type plus PriorSyncInfo (high-water mark, last run times)
- entity: the SyncEntityOptions being synced
- report_progress: callable(value, max) persisting progress synchronously
- cancellation: optional threading.Event to poll

and returns a SyncResult.

Jobs must be idempotent per trigger: a lease can expire mid-run and the
entity be re-acquired elsewhere, so the same work may run more than once.
"""

import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional

from synclease.schemas import SyncResult, SyncTrigger

if TYPE_CHECKING:
    from synclease.entities import SyncEntityOptions


ProgressReporter = Callable[[int, int], None]


class EntitySync(ABC):
    """Abstract base class for sync jobs."""

    @abstractmethod
    def run(
        self,
        trigger: SyncTrigger,
        entity: "SyncEntityOptions",
        report_progress: ProgressReporter,
        cancellation: Optional[threading.Event] = None,
    ) -> SyncResult:
        """
        Run the sync.

        Args:
            trigger: Trigger that initiated the run, including prior-sync info
            entity: The entity options
            report_progress: Persist progress; blocks until written
            cancellation: Optional cancellation signal

        Returns:
            SyncResult describing the outcome (never None)

        Raises:
            Exception: Any exception is recorded as a failed sync
        """
        pass


class FunctionSync(EntitySync):
    """
    Adapts a plain function with the ``run`` signature into an EntitySync.

    Usage:
        def sync_orders(trigger, entity, report_progress, cancellation):
            ...
            return SyncResult(success=True, record_count=10)

        registry.register("orders", lambda: FunctionSync(sync_orders))
    """

    def __init__(self, func: Callable[..., SyncResult]):
        self._func = func

    def run(self, trigger, entity, report_progress, cancellation=None) -> SyncResult:
        return self._func(trigger, entity, report_progress, cancellation)

    def __repr__(self) -> str:
        return f"FunctionSync({getattr(self._func, '__name__', self._func)!r})"
