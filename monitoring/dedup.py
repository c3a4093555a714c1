"""Trailing-window deduplication of socket sightings.

A socket is emitted the first time it is seen, then suppressed for the
length of the window. A re-sighting inside the window does not refresh the
timestamp, so a long-lived socket is re-confirmed once per window instead
of being reported only once.
"""

import logging
from typing import Dict

from monitoring.socket_parser import SocketTuple

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 5 * 60  # seconds


def dedup_key(sock: SocketTuple) -> str:
    """Build the identity key for a socket (state and owner are not part of it)."""
    return (f"{sock.protocol}:{sock.local_address}:{sock.local_port}:"
            f"{sock.remote_address}:{sock.remote_port}")


class DedupWindow:
    """Last-seen timestamps for recently emitted sockets."""

    def __init__(self, window: float = DEFAULT_WINDOW):
        if window <= 0:
            raise ValueError("dedup window must be positive")
        self.window = window
        self._last_seen: Dict[str, float] = {}

    def should_emit(self, sock: SocketTuple, now: float) -> bool:
        """Decide whether a socket sighting is new.

        Args:
            sock: Parsed socket
            now: Current time in seconds

        Returns:
            True if the socket was never seen or its last emission has aged
            out of the window. Only then is ``now`` recorded.
        """
        if not self.is_new(sock, now):
            return False
        self.mark(sock, now)
        return True

    def is_new(self, sock: SocketTuple, now: float) -> bool:
        """Check a sighting without recording it."""
        last_seen = self._last_seen.get(dedup_key(sock))
        return last_seen is None or now - last_seen >= self.window

    def mark(self, sock: SocketTuple, now: float) -> None:
        """Record ``now`` as the socket's emission time."""
        self._last_seen[dedup_key(sock)] = now

    def sweep(self, now: float) -> int:
        """Drop entries older than the window. Returns how many were removed."""
        expired = [key for key, seen in self._last_seen.items() if now - seen >= self.window]
        for key in expired:
            del self._last_seen[key]
        if expired:
            logger.debug(f"Dedup sweep removed {len(expired)} expired sockets")
        return len(expired)

    def clear(self) -> None:
        self._last_seen.clear()

    def __len__(self) -> int:
        return len(self._last_seen)

    def __contains__(self, sock: SocketTuple) -> bool:
        return dedup_key(sock) in self._last_seen
