"""
Eligibility strategies - decide whether a non-manual trigger should run.

A strategy is a pure predicate over the trigger's PriorSyncInfo and the
wall clock. It must not touch the log store: the snapshot it receives was
computed atomically with the lease acquisition.

Manual triggers never reach a strategy; the orchestrator bypasses it.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from synclease.clock import Clock, utcnow
from synclease.schemas import SyncTrigger

if TYPE_CHECKING:
    from synclease.entities import SyncEntityOptions


class EligibilityStrategy(ABC):
    """Abstract base class for eligibility strategies."""

    @abstractmethod
    def is_eligible_to_sync(
        self,
        trigger: SyncTrigger,
        entity: Optional["SyncEntityOptions"] = None,
    ) -> bool:
        """
        Decide whether the entity should sync for this trigger.

        Args:
            trigger: Trigger type plus prior-sync snapshot
            entity: The entity being checked

        Returns:
            True if the sync should proceed
        """
        pass


class AlwaysEligible(EligibilityStrategy):
    """Every trigger is eligible."""

    def is_eligible_to_sync(self, trigger, entity=None) -> bool:
        return True

    def __repr__(self) -> str:
        return "AlwaysEligible()"

    def __eq__(self, other) -> bool:
        return isinstance(other, AlwaysEligible)

    def __hash__(self) -> int:
        return hash("AlwaysEligible")


class IntervalEligibility(EligibilityStrategy):
    """
    Eligible once ``interval`` has elapsed since the key was last leased.

    An entity with no lease history is always eligible. Elapsed time equal
    to the interval counts as eligible.
    """

    def __init__(self, interval: timedelta, clock: Clock = utcnow):
        if interval < timedelta(0):
            raise ValueError(f"interval must not be negative, got {interval}")
        self.interval = interval
        self._clock = clock

    def is_eligible_to_sync(self, trigger, entity=None) -> bool:
        last_leased_at = trigger.prior_sync_info.last_sync_leased_at
        if last_leased_at is None:
            return True
        return self._clock() - last_leased_at >= self.interval

    def __repr__(self) -> str:
        return f"IntervalEligibility(interval={self.interval!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, IntervalEligibility) and other.interval == self.interval

    def __hash__(self) -> int:
        return hash(("IntervalEligibility", self.interval))


DEFAULT_ELIGIBILITY_INTERVAL = timedelta(days=1)
