"""
Watch-mode runner.

Runs a task once, then once per interval until stopped. A pass that is
still running when the next one is due makes that tick a no-op instead
of starting a second, overlapping pass.
"""

import threading
from typing import Callable

from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


class PeriodicRunner:
    """
    Args:
        task: Zero-argument callable run on every pass
        interval_s: Seconds between passes
        name: Label used in log lines
    """

    def __init__(self, task: Callable[[], object], interval_s: float, name: str = "update"):
        self.task = task
        self.interval_s = interval_s
        self.name = name
        self._running = threading.Lock()
        self._stop = threading.Event()

    def run_once(self) -> bool:
        """
        Run one pass unless another pass is in flight.

        run_forever() calls this from a single thread, one pass after the
        other, so the lock only skips a pass when run_once() is also called
        from another thread (a signal handler, a server hook or a test).

        Returns:
            True if the task ran, False if the tick was skipped
        """
        if not self._running.acquire(blocking=False):
            logger.info(f"[{self.name}] previous pass still running; skipping tick")
            return False
        try:
            self.task()
            return True
        finally:
            self._running.release()

    def tick(self) -> None:
        """One scheduled pass; any error is logged and the loop carries on."""
        try:
            self.run_once()
        except Exception:
            logger.exception(f"[{self.name}] pass failed")

    def run_forever(self) -> None:
        """
        Initial pass (errors propagate), then one pass per interval until stop().

        Passes run sequentially on the calling thread; Event.wait() only
        paces them and does not by itself guard against overlap.
        """
        self.run_once()
        logger.info(f"[{self.name}] watching; next pass in {self.interval_s:.0f}s")
        while not self._stop.wait(self.interval_s):
            self.tick()
        logger.info(f"[{self.name}] stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
