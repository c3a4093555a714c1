"""Reverse DNS resolution with a time-limited cache.

Resolves remote IPs to hostnames for display. Local ranges get a fixed
label and never touch the network. Failed lookups are cached with the same
TTL as successes so an unresponsive resolver is not asked again every scan.

Usage:
    resolver = HostnameResolver(ttl=300, lookup_timeout=2)
    resolver.resolve('142.250.185.110')   # 'fra16s52-in-f14.1e100.net'
    resolver.resolve('10.0.0.5')          # 'local'
    resolver.resolve('203.0.113.9')       # None (no PTR record)
"""

import socket
import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from monitoring.address_utils import is_valid_ip, local_label, normalize_ip

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60  # seconds, applied to successes and failures alike
DEFAULT_LOOKUP_TIMEOUT = 2.0


@dataclass
class CacheEntry:
    hostname: Optional[str]
    resolved_at: float


def system_reverse_lookup(ip: str) -> Optional[str]:
    """Reverse lookup through the system resolver.

    Returns:
        The primary name for the address, or None if there is no PTR record
    """
    try:
        hostname, aliases, _ = socket.gethostbyaddr(ip)
    except (socket.herror, socket.gaierror):
        return None
    except OSError as e:
        logger.debug(f"Reverse lookup for {ip} failed: {e}")
        return None
    return hostname or (aliases[0] if aliases else None)


class HostnameResolver:
    """IP-to-hostname resolver with positive and negative caching."""

    def __init__(self, ttl: float = DEFAULT_TTL,
                 lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
                 reverse_lookup: Optional[Callable[[str], Optional[str]]] = None,
                 clock: Callable[[], float] = time.time,
                 max_workers: int = 4):
        """Initialize resolver.

        Args:
            ttl: Seconds a cached answer (or cached failure) stays valid
            lookup_timeout: Seconds to wait for one reverse lookup
            reverse_lookup: Lookup function ip -> name or None (system resolver by default)
            clock: Time source, replaceable in tests
            max_workers: Threads available for concurrent lookups
        """
        self.ttl = ttl
        self.lookup_timeout = lookup_timeout
        self.reverse_lookup = reverse_lookup or system_reverse_lookup
        self.clock = clock
        self.max_workers = max_workers
        self.lookups_performed = 0
        self._cache: Dict[str, CacheEntry] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    def resolve(self, ip: str) -> Optional[str]:
        """Resolve an IP address to a hostname.

        Args:
            ip: Address text (brackets and %zone suffixes are tolerated)

        Returns:
            Hostname, a local label ('localhost', 'any', 'link-local',
            'local'), the input unchanged if it is not an IP, or None when
            no useful hostname exists.
        """
        return self.resolve_many([ip])[ip]

    def resolve_many(self, ips: Iterable[str]) -> Dict[str, Optional[str]]:
        """Resolve several addresses, each distinct address once.

        Cache misses are looked up concurrently and share a single
        ``lookup_timeout`` deadline, so a batch never waits longer than one
        lookup would.
        """
        results: Dict[str, Optional[str]] = {}
        pending: Dict[str, List[str]] = {}
        now = self.clock()

        for ip in dict.fromkeys(ips):
            if not is_valid_ip(ip):
                results[ip] = ip
                continue

            label = local_label(ip)
            if label:
                results[ip] = label
                continue

            key = normalize_ip(ip)
            entry = self._cache.get(key)
            if entry is not None:
                if now - entry.resolved_at < self.ttl:
                    results[ip] = entry.hostname
                    continue
                del self._cache[key]
            pending.setdefault(key, []).append(ip)

        if not pending:
            return results

        answers = self._lookup_all(list(pending))
        resolved_at = self.clock()
        for key, spellings in pending.items():
            hostname = answers.get(key)
            if hostname is None or hostname == key or hostname in spellings:
                hostname = None
            self._cache[key] = CacheEntry(hostname=hostname, resolved_at=resolved_at)
            for ip in spellings:
                results[ip] = hostname

        return results

    def _lookup_all(self, ips: List[str]) -> Dict[str, Optional[str]]:
        self.lookups_performed += len(ips)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix='glassnet-dns'
            )

        futures = {self._executor.submit(self.reverse_lookup, ip): ip for ip in ips}
        done, not_done = wait(futures, timeout=self.lookup_timeout)

        answers = {}
        for future in done:
            ip = futures[future]
            try:
                answers[ip] = future.result()
            except Exception as e:
                logger.debug(f"Reverse lookup for {ip} raised {e!r}")
        for future in not_done:
            future.cancel()
            logger.debug(f"Reverse lookup for {futures[future]} timed out after {self.lookup_timeout}s")
        return answers

    def sweep(self) -> int:
        """Remove expired entries. Returns number removed."""
        now = self.clock()
        expired = [ip for ip, entry in self._cache.items() if now - entry.resolved_at >= self.ttl]
        for ip in expired:
            del self._cache[ip]
        return len(expired)

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, float]:
        """Cache statistics: total entries, unexpired entries and their ratio."""
        now = self.clock()
        valid = sum(1 for entry in self._cache.values() if now - entry.resolved_at < self.ttl)
        total = len(self._cache)
        return {
            'total_entries': total,
            'valid_entries': valid,
            'valid_ratio': valid / total if total else 0,
            'lookups_performed': self.lookups_performed
        }

    def close(self) -> None:
        """Release lookup threads. Pending lookups are abandoned."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __len__(self) -> int:
        return len(self._cache)
