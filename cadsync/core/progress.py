"""
Progress Channel

Thread-safe, ordered channel of progress events written by the executor and
drained by a consumer (the web API's event stream, a CLI, tests). Events are
live only: nothing is persisted or replayed.

Author: CADSync Project
License: MIT
"""

import queue
import threading
from typing import List, Optional

from ..utils.logger import get_logger
from .models import ProgressEvent, ProgressOperation

logger = get_logger(__name__)


class ProgressChannel:
    """
    Bounded FIFO of ProgressEvents.

    Features:
    - Monotonic ``files_processed`` within a run (enforced under a lock)
    - Oldest events dropped when the consumer falls behind
    - Latest event kept for status polling
    """

    def __init__(self, max_size: int = 10000):
        """
        Initialize progress channel.

        Args:
            max_size: Maximum number of undrained events
        """
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=max_size)
        self.max_size = max_size
        self._lock = threading.Lock()
        self._latest: Optional[ProgressEvent] = None
        self._processed = 0

        # Statistics
        self._total_emitted = 0
        self._total_dropped = 0

    def start_run(self, total_files: int) -> ProgressEvent:
        """Reset the counter and emit the initial scanning event."""
        with self._lock:
            self._processed = 0
        return self.emit(None, 0, total_files, ProgressOperation.SCANNING)

    def emit(
        self,
        current_file: Optional[str],
        files_processed: int,
        total_files: int,
        operation: ProgressOperation
    ) -> ProgressEvent:
        """
        Publish an event.

        ``files_processed`` lower than a value already published in this run
        is raised to it, so consumers never see progress go backwards.
        """
        with self._lock:
            processed = max(files_processed, self._processed)
            self._processed = processed
            if total_files > 0:
                percentage = round(min(100.0, processed * 100.0 / total_files), 1)
            else:
                percentage = 100.0 if operation == ProgressOperation.COMPLETED else 0.0

            event = ProgressEvent(
                current_file=current_file,
                files_processed=processed,
                total_files=total_files,
                operation=operation,
                percentage=percentage
            )

            try:
                self._queue.put_nowait(event)
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
                self._queue.put_nowait(event)
                self._total_dropped += 1
                logger.debug("Progress channel full, dropped oldest event")

            self._latest = event
            self._total_emitted += 1

        return event

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """
        Remove and return the next event.

        Args:
            timeout: Seconds to wait (None = block until an event arrives)

        Returns:
            ProgressEvent or None on timeout
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ProgressEvent]:
        """Remove and return every pending event in order."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    @property
    def latest(self) -> Optional[ProgressEvent]:
        return self._latest

    def size(self) -> int:
        return self._queue.qsize()

    def get_statistics(self) -> dict:
        return {
            'pending': self.size(),
            'max_size': self.max_size,
            'total_emitted': self._total_emitted,
            'total_dropped': self._total_dropped
        }
