"""Fan-out of new connection batches to live subscribers.

The scan cycle only enqueues batches; a dispatcher thread (or an explicit
dispatch_pending() call) delivers them to subscriber callbacks. A slow or
failing subscriber therefore never runs inside a scan cycle.
"""

import queue
import threading
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[[list], None]


class ConnectionBroadcaster:
    """Queue-backed notification channel for connection batches."""

    def __init__(self, max_pending: int = 100):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._queue: "queue.Queue[list]" = queue.Queue(maxsize=max_pending)
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def notify(self, batch: list) -> None:
        """Enqueue a batch for delivery. Empty batches are ignored.

        When the queue is full the oldest pending batch is dropped.
        """
        if not batch:
            return
        batch = list(batch)
        while True:
            try:
                self._queue.put_nowait(batch)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    logger.warning("Subscriber queue full, dropped oldest pending batch")
                except queue.Empty:
                    pass

    def _deliver(self, batch: list) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(batch)
            except Exception:
                logger.exception(f"Subscriber {callback!r} failed")

    def dispatch_pending(self) -> int:
        """Deliver every queued batch on the calling thread.

        Returns:
            Number of batches delivered
        """
        delivered = 0
        while True:
            try:
                batch = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(batch)
            delivered += 1

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                batch = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._deliver(batch)
        self.dispatch_pending()

    def start(self) -> None:
        """Start the background dispatcher thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='glassnet-broadcast', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5) -> None:
        """Stop the dispatcher after delivering what is already queued."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
