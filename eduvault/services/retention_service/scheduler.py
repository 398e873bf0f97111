"""Periodic trigger for retention cycles.

Runs the archiver on a daemon thread every `interval_seconds`. Overlap
with a manually triggered cycle is resolved by the archiver itself: the
later trigger is reported as skipped.
"""
import logging
import threading
from typing import Optional

from eduvault.shared.models import CycleReport
from eduvault.shared.utils import Clock, utc_now
from .archiver import RetentionArchiver

logger = logging.getLogger(__name__)


class RetentionScheduler:
    """Background loop calling RetentionArchiver.run_cycle."""

    def __init__(
        self,
        archiver: RetentionArchiver,
        interval_seconds: float = 3600,
        clock: Clock = utc_now,
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.archiver = archiver
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.cycles_run = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop,
                name="eduvault-retention",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "RETENTION_SCHEDULER_STARTED",
            extra={"interval_seconds": self.interval_seconds}
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and cancel any cycle in flight."""
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop_event.set()
        self.archiver.cancel()
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("RETENTION_SCHEDULER_STOP_TIMEOUT", extra={"timeout_seconds": timeout})
        logger.info("RETENTION_SCHEDULER_STOPPED", extra={"cycles_run": self.cycles_run})

    def trigger_now(self) -> CycleReport:
        """Run a cycle on the calling thread."""
        return self.archiver.run_cycle(self._clock())

    def _loop(self) -> None:
        if self.run_immediately:
            self._tick()
        while not self._stop_event.wait(self.interval_seconds):
            self._tick()

    def _tick(self) -> None:
        try:
            self.archiver.run_cycle(self._clock(), cancel_check=self._stop_event.is_set)
            self.cycles_run += 1
        except Exception as e:
            # next interval retries
            logger.error(
                "RETENTION_SCHEDULED_CYCLE_CRASHED",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
