"""
PeriodicSyncRunner - runs sync passes on a fixed interval.

The runner waits ``startup_delay``, then calls
``SyncService.sync_all_eligible`` every ``check_interval``. A tick that
fires while the previous pass is still running is skipped. Stopping the
runner sets the cancellation signal handed to the running pass.
"""

import logging
import threading
from datetime import timedelta
from typing import Optional

from synclease.schemas import SyncResult, SyncTriggerType
from synclease.service import SyncService

logger = logging.getLogger(__name__)


class PeriodicSyncRunner:
    """
    Background loop driving a SyncService.

    Usage:
        runner = PeriodicSyncRunner(service, check_interval=timedelta(minutes=5))
        runner.start()
        ...
        runner.stop()
    """

    def __init__(
        self,
        service: SyncService,
        check_interval: timedelta,
        startup_delay: timedelta = timedelta(0),
        trigger_type: SyncTriggerType = SyncTriggerType.TIMER,
    ):
        if check_interval <= timedelta(0):
            raise ValueError(f"check_interval must be positive, got {check_interval}")
        if startup_delay < timedelta(0):
            raise ValueError(f"startup_delay must not be negative, got {startup_delay}")
        self.service = service
        self.check_interval = check_interval
        self.startup_delay = startup_delay
        self.trigger_type = trigger_type
        self._stop = threading.Event()
        self._pass_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> list[SyncResult]:
        """
        Run one sync pass now.

        Returns:
            The pass results; empty if a pass was already running or the
            pass raised (the error is logged)
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.info("Previous sync pass still running; skipping this tick")
            return []
        try:
            return self.service.sync_all_eligible(self.trigger_type, self._stop)
        except Exception as e:
            logger.error(f"Sync pass failed: {e}", exc_info=True)
            return []
        finally:
            self._pass_lock.release()

    def run_forever(self) -> None:
        """Run the loop in the calling thread until ``stop`` is called."""
        logger.info(
            f"Periodic sync runner started (interval {self.check_interval}, "
            f"startup delay {self.startup_delay})"
        )
        if self._stop.wait(self.startup_delay.total_seconds()):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.check_interval.total_seconds()):
                break
        logger.info("Periodic sync runner stopped")

    def start(self) -> None:
        """Start the loop on a daemon thread."""
        if self.is_running:
            raise RuntimeError("PeriodicSyncRunner is already running")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="synclease-runner", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop (and any running pass) to stop and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
