"""
Concurrency primitives shared by batch operations.

- CancellationToken: cooperative cancellation checked between units of work
- ProgressReporter: bounded, non-blocking progress channel drained by a
  listener thread, so a slow consumer never stalls the workers
"""

import logging
import queue
import threading
from typing import Callable, Optional

from .types import ProgressEvent

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

_STOP = object()


class CancellationToken:
    """Flag checked by batch operations between per-file units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Work already in progress is finished first."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProgressReporter:
    """
    Deliver progress events to a listener through a bounded queue.

    ``advance()`` never blocks the caller. When the queue is full the oldest
    pending event is dropped so the consumer always sees the most recent
    count. Counts are assigned under a lock, so events arrive in monotonic
    order even when many workers report at once.

    Example:
        >>> with ProgressReporter("hash", total=3, listener=print) as progress:
        ...     progress.advance(path="a.jpg")
    """

    def __init__(
        self,
        operation: str,
        total: int,
        listener: Optional[ProgressListener] = None,
        maxsize: int = 256,
    ):
        self.operation = operation
        self.total = total
        self.listener = listener
        self.completed = 0
        self.dropped = 0
        self._lock = threading.Lock()
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None

        if listener is not None:
            self._thread = threading.Thread(
                target=self._drain,
                name=f"progress-{operation}",
                daemon=True,
            )
            self._thread.start()

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def advance(self, path: Optional[str] = None, success: bool = True) -> int:
        """Record one completed unit of work and publish an event."""
        with self._lock:
            self.completed += 1
            completed = self.completed
            if self.listener is not None:
                self._publish(
                    ProgressEvent(
                        operation=self.operation,
                        completed=completed,
                        total=self.total,
                        path=path,
                        success=success,
                    )
                )
        return completed

    def _publish(self, event: ProgressEvent) -> None:
        # Called with self._lock held, so only the drain thread competes
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self.listener(item)  # type: ignore[misc,arg-type]
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")

    def close(self, timeout: float = 5.0) -> None:
        """Deliver any queued events and stop the listener thread."""
        if self._thread is None:
            return
        # The stop marker must not be dropped, so this put may wait
        try:
            self._queue.put(_STOP, timeout=timeout)
            self._thread.join(timeout)
        except queue.Full:
            logger.warning(f"{self.operation}: progress listener is not responding")
        self._thread = None
        if self.dropped:
            logger.debug(
                f"{self.operation}: dropped {self.dropped} progress events "
                "for a slow listener"
            )
