"""Background maintenance timer.

A single daemon ``threading.Timer`` at a time. The task decides after each
run whether another run is needed by returning the next interval (or None
to go idle), so an idle cache leaves no timer behind.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Cancellable, self-rescheduling timer.

    Args:
        task: Called on the timer thread; returns the delay before the next
            run, or None to stop
        name: Thread name for the timer
    """

    def __init__(self, task: Callable[[], Optional[float]], name: str = "memocache-maintenance"):
        self._task = task
        self._name = name
        self._timer: Optional[threading.Timer] = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def scheduled(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, interval: float) -> bool:
        """Arm the timer unless it is already armed or closed.

        Returns:
            True if a new timer was started
        """
        with self._lock:
            if self._closed or self._timer is not None:
                return False
            timer = threading.Timer(interval, self._run)
            timer.name = self._name
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.debug(f"Maintenance scheduled in {interval:.3f}s")
        return True

    def cancel(self) -> None:
        """Stop a pending run; later ``schedule`` calls still work."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def close(self) -> None:
        """Stop a pending run and refuse any further scheduling."""
        with self._lock:
            self._closed = True
        self.cancel()

    def _run(self) -> None:
        with self._lock:
            # a cancelled or superseded timer may still fire once
            if self._closed or self._timer is not threading.current_thread():
                return
            self._timer = None
        next_interval = self._task()
        if next_interval is not None:
            self.schedule(next_interval)
