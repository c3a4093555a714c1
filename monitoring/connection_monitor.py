"""Local connection monitoring module.

Captures active network connections from this machine's socket table,
attributes them to processes and users, resolves remote hostnames and
emits each new connection once per dedup window.
No admin privileges required for basic functionality (process names of
other users' sockets may show as Unknown).
Works on Windows, Linux, and macOS.

One scan cycle:
    Scanning -> Parsing -> Deduplicating -> Enriching -> Emitting

Classes:
    - ConnectionRecord: Enriched, emission-ready connection
    - ConnectionMonitor: Runs scan cycles and owns the dedup/hostname state
"""

import time
import threading
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from monitoring.address_utils import is_local_socket, is_wildcard_address
from monitoring.config import MonitorConfig
from monitoring.dedup import DedupWindow, dedup_key
from monitoring.dns_resolver import HostnameResolver
from monitoring.errors import UnsupportedPlatformError
from monitoring.process_mapper import ProcessResolver
from monitoring.scan_strategies import ScanStrategy, select_strategy
from monitoring.socket_parser import SocketTuple, parse

logger = logging.getLogger(__name__)

UNKNOWN = 'Unknown'


class ScanPhase(Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    PARSING = 'parsing'
    DEDUPLICATING = 'deduplicating'
    ENRICHING = 'enriching'
    EMITTING = 'emitting'


@dataclass
class ConnectionRecord:
    """A socket attributed to a process, ready to be stored and broadcast."""
    protocol: str
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: str
    process_id: Optional[int]
    process_name: str
    user_name: str
    remote_hostname: Optional[str] = None
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize; remote_hostname is left out when nothing resolved."""
        data = asdict(self)
        if data['remote_hostname'] is None:
            del data['remote_hostname']
        return data


class ConnectionMonitor:
    """Scan pipeline controller.

    Owns the dedup window and hostname cache for its lifetime; separate
    monitors share no state.
    """

    def __init__(self, config: Optional[MonitorConfig] = None,
                 store: Any = None, notifier: Any = None,
                 strategy: Optional[ScanStrategy] = None,
                 process_resolver: Optional[ProcessResolver] = None,
                 hostname_resolver: Optional[HostnameResolver] = None,
                 clock: Callable[[], float] = time.time,
                 system: Optional[str] = None):
        """Initialize monitor.

        Args:
            config: Monitor settings (defaults if None)
            store: Object with persist(record) -> id, or None
            notifier: Object with notify(batch), or None
            strategy: Socket scan strategy (platform default if None)
            process_resolver: pid -> owner resolver (platform default if None)
            hostname_resolver: Reverse DNS resolver (built from config if None)
            clock: Time source in seconds
            system: Platform name override, e.g. 'Linux'

        Raises:
            UnsupportedPlatformError: If no scan strategy exists for the platform
        """
        self.config = config or MonitorConfig()
        self.store = store
        self.notifier = notifier
        self.clock = clock

        if strategy is None:
            try:
                strategy = select_strategy(system, timeout=self.config.command_timeout)
            except UnsupportedPlatformError as e:
                logger.error(f"Cannot monitor connections: {e}")
                raise
        self.strategy = strategy

        if process_resolver is None:
            process_resolver = ProcessResolver(system=system)
        self.process_resolver = process_resolver
        if hostname_resolver is None:
            hostname_resolver = HostnameResolver(
                ttl=self.config.hostname_ttl,
                lookup_timeout=self.config.lookup_timeout
            )
        self.hostnames = hostname_resolver
        self.dedup = DedupWindow(window=self.config.dedup_window)

        self.phase = ScanPhase.IDLE
        self.cycles_completed = 0
        self.last_scan_at: Optional[float] = None
        self.last_batch_size = 0
        self._cycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Scan cycle
    # ------------------------------------------------------------------

    def scan_once(self, now: Optional[float] = None) -> List[ConnectionRecord]:
        """Run one scan cycle.

        Args:
            now: Cycle timestamp in seconds (clock() if None)

        Returns:
            Newly emitted connection records; empty when nothing is new,
            the scan tool failed or another cycle is still running
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous scan cycle still running, skipping this one")
            return []

        try:
            records = self._run_cycle(self.clock() if now is None else now)
        except Exception:
            logger.exception("Scan cycle failed")
            records = []
        finally:
            self.phase = ScanPhase.IDLE
            self._cycle_lock.release()

        return records

    def _run_cycle(self, now: float) -> List[ConnectionRecord]:
        self.dedup.sweep(now)
        self.hostnames.sweep()

        self.phase = ScanPhase.SCANNING
        raw = self.strategy.collect()
        if raw is None:
            logger.warning("No socket data this cycle")
            self._finish_cycle(now, 0)
            return []

        self.phase = ScanPhase.PARSING
        sockets = self.filter_sockets(parse(raw.dialect, raw.text))

        self.phase = ScanPhase.DEDUPLICATING
        new_sockets = []
        batch_keys = set()
        for sock in sockets:
            key = dedup_key(sock)
            if key in batch_keys or not self.dedup.is_new(sock, now):
                continue
            batch_keys.add(key)
            new_sockets.append(sock)

        self.phase = ScanPhase.ENRICHING
        records = self.enrich(new_sockets, now)

        # Only enriched sockets count as seen; a failed cycle retries them next time
        for sock in new_sockets:
            self.dedup.mark(sock, now)

        self.phase = ScanPhase.EMITTING
        if records:
            self.emit(records)

        logger.debug(f"{raw.tool}: {len(sockets)} sockets, {len(records)} new")
        self._finish_cycle(now, len(records))
        return records

    def _finish_cycle(self, now: float, batch_size: int) -> None:
        self.cycles_completed += 1
        self.last_scan_at = now
        self.last_batch_size = batch_size

    def filter_sockets(self, sockets: List[SocketTuple]) -> List[SocketTuple]:
        """Drop disabled protocols and, unless configured otherwise, local traffic."""
        protocols = set(self.config.protocols)
        kept = []
        for sock in sockets:
            if sock.protocol not in protocols:
                continue
            if not self.config.include_loopback and is_local_socket(sock.local_address, sock.remote_address):
                continue
            kept.append(sock)
        return kept

    def enrich(self, sockets: List[SocketTuple], now: float) -> List[ConnectionRecord]:
        """Attach process, user and hostname details.

        Each pid is looked up once per batch, and only when the socket table
        did not already name the process and user. Remote hostnames for the
        whole batch are resolved together under one lookup timeout.
        """
        pending_pids = {
            sock.process_id for sock in sockets
            if sock.process_id and not (sock.process_name and sock.user_name)
        }
        processes = {}
        if pending_pids:
            try:
                processes = self.process_resolver.lookup_many(pending_pids)
            except Exception:
                logger.exception("Process lookup failed, owners reported as Unknown")

        hostnames = {}
        if self.config.resolve_hostnames:
            remotes = [sock.remote_address for sock in sockets
                       if not is_wildcard_address(sock.remote_address)]
            if remotes:
                hostnames = self.hostnames.resolve_many(remotes)

        records = []
        for sock in sockets:
            info = processes.get(sock.process_id)
            process_name = sock.process_name or (info.name if info else None) or UNKNOWN
            user_name = sock.user_name or (info.user if info else None) or UNKNOWN

            remote_hostname = None
            resolved = hostnames.get(sock.remote_address)
            if resolved and resolved != sock.remote_address:
                remote_hostname = resolved

            records.append(ConnectionRecord(
                protocol=sock.protocol,
                local_address=sock.local_address,
                local_port=sock.local_port,
                remote_address=sock.remote_address,
                remote_port=sock.remote_port,
                state=sock.state,
                process_id=sock.process_id,
                process_name=process_name,
                user_name=user_name,
                remote_hostname=remote_hostname,
                timestamp=now
            ))

        return records

    def emit(self, records: List[ConnectionRecord]) -> None:
        """Persist each record, then notify subscribers with the whole batch."""
        if self.store is not None:
            for record in records:
                try:
                    self.store.persist(record)
                except Exception:
                    logger.exception(f"Failed to persist connection {record.protocol} "
                                     f"{record.remote_address}:{record.remote_port}")

        if self.notifier is not None:
            try:
                self.notifier.notify(records)
            except Exception:
                logger.exception("Failed to notify subscribers")

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget every tracked socket and cached hostname."""
        with self._cycle_lock:
            self.dedup.clear()
            self.hostnames.clear()
        logger.info("Connection tracking state reset")

    @property
    def active_tracked_sockets(self) -> int:
        return len(self.dedup)

    def status(self) -> Dict[str, Any]:
        """Get monitor-side status fields."""
        return {
            'enabled_protocols': list(self.config.protocols),
            'include_loopback': self.config.include_loopback,
            'active_tracked_sockets': self.active_tracked_sockets,
            'subscriber_count': getattr(self.notifier, 'subscriber_count', 0),
            'phase': self.phase.value,
            'cycles_completed': self.cycles_completed,
            'last_scan_at': self.last_scan_at,
            'last_batch_size': self.last_batch_size
        }

    def close(self) -> None:
        self.hostnames.close()
