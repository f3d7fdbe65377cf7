"""
Cross-thread cancellation of a backup run.

The CLI's signal handlers run in the main thread while a scheduled backup
runs in an APScheduler worker. A Cancellation is shared by both: the handler
calls cancel(), the orchestrator checks it between databases and the dump
pipeline registers a callback that kills its running processes.
"""

import logging
import threading
from typing import Callable, Optional

from .errors import RunTerminated


logger = logging.getLogger(__name__)


class Cancellation:
    """Thread-safe cancellation flag with kill callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = {}
        self._next_handle = 0
        self.exit_code: Optional[int] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, exit_code: int = 143):
        """
        Request cancellation.

        The first exit code wins. Registered callbacks are called once, in
        the calling thread.

        Args:
            exit_code: Process exit status to report (143 SIGTERM, 130 SIGINT)
        """
        with self._lock:
            if self.exit_code is None:
                self.exit_code = exit_code
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        logger.warning(f"Cancellation requested (exit status {self.exit_code})")
        for callback in callbacks:
            callback()

    def check(self):
        """
        Raises:
            RunTerminated: If cancellation was requested
        """
        if self.cancelled:
            raise RunTerminated(self.exit_code)

    def add_callback(self, callback: Callable[[], None]) -> int:
        """
        Register a callback to run on cancel().

        If cancellation was already requested the callback runs immediately.

        Returns:
            Handle for remove_callback()
        """
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            if not self._event.is_set():
                self._callbacks[handle] = callback
                return handle

        callback()
        return handle

    def remove_callback(self, handle: int):
        with self._lock:
            self._callbacks.pop(handle, None)
