"""Periodic driver for ConnectionMonitor scan cycles.

Cycles never overlap: the single scheduler thread waits for a cycle to
finish before starting the next, and a tick missed while a long cycle was
running is skipped rather than queued.
"""

import time
import threading
import logging
from typing import Any, Callable, Dict, Optional

from monitoring.connection_monitor import ConnectionMonitor

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL = 24 * 60 * 60  # seconds


class ScanScheduler:
    """Run a ConnectionMonitor on a fixed interval in a background thread."""

    def __init__(self, monitor: ConnectionMonitor, interval_ms: Optional[int] = None,
                 store: Any = None, retention_days: Optional[int] = None,
                 cleanup_interval: float = CLEANUP_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize scheduler.

        Args:
            monitor: Monitor whose scan_once() is called every tick
            interval_ms: Tick interval (monitor config value if None)
            store: Store with clean_old_records(days), for daily retention cleanup
            retention_days: Days of history to keep (monitor config value if None)
            cleanup_interval: Seconds between retention cleanups
            clock: Monotonic time source for tick spacing
        """
        self.monitor = monitor
        self.interval_ms = interval_ms or monitor.config.interval_ms
        self.store = store
        self.retention_days = retention_days or monitor.config.retention_days
        self.cleanup_interval = cleanup_interval
        self.clock = clock
        self.skipped_ticks = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_cleanup: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start periodic scanning; the first scan runs immediately."""
        if self.running:
            logger.info("Network monitoring is already running")
            return

        logger.info("Starting network monitoring...")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='glassnet-scan', daemon=True)
        self._thread.start()
        logger.info(f"Network monitoring started with {self.interval_ms}ms interval")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scanning. An in-flight cycle is allowed to finish."""
        if not self.running:
            return

        logger.info("Stopping network monitoring...")
        self._stop.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Scan cycle still running after stop timeout")
        else:
            self._thread = None
            logger.info("Network monitoring stopped")

    def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        next_tick = self.clock()

        while not self._stop.is_set():
            self.tick()

            next_tick += interval
            now = self.clock()
            if now > next_tick:
                missed = int((now - next_tick) // interval) + 1
                self.skipped_ticks += missed
                logger.debug(f"Scan cycle overran the interval, skipping {missed} tick(s)")
                next_tick += missed * interval

            self._stop.wait(max(0.0, next_tick - self.clock()))

    def tick(self) -> None:
        """Run one scan cycle plus any due retention cleanup."""
        self.monitor.scan_once()
        self._maybe_cleanup()

    def _maybe_cleanup(self) -> None:
        if self.store is None:
            return
        now = self.clock()
        if self._last_cleanup is not None and now - self._last_cleanup < self.cleanup_interval:
            return
        self._last_cleanup = now
        try:
            deleted = self.store.clean_old_records(self.retention_days)
        except Exception:
            logger.exception("Retention cleanup failed")
            return
        if deleted:
            logger.info(f"Removed {deleted} connection records older than {self.retention_days} days")

    def status(self) -> Dict[str, Any]:
        """Get a snapshot of monitoring status.

        Returns:
            Dict with running, interval_ms, enabled_protocols,
            include_loopback, active_tracked_sockets, subscriber_count and
            cycle counters
        """
        status = {
            'running': self.running,
            'interval_ms': self.interval_ms,
        }
        status.update(self.monitor.status())
        status['skipped_ticks'] = self.skipped_ticks
        return status
