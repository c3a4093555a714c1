"""Process-to-owner mapper.

Maps PIDs (Process IDs) to the process name and the user that owns it, so
each connection can be attributed to an application.

Lookups happen on demand every scan: a pid seen in the previous scan may
belong to a different process by now.

Functions:
    - lookup_unix: ps-based lookup for Linux and macOS
    - lookup_windows: tasklist-based lookup for Windows
    - ProcessResolver: platform dispatch plus per-batch lookups
"""

import csv
import os
import platform
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from monitoring.command_executor import CommandResult, execute
from monitoring.errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5

Executor = Callable[..., CommandResult]


@dataclass(frozen=True)
class ProcessInfo:
    """Display name and owning user of a process."""
    name: str
    user: str


def lookup_unix(pid: int, run: Executor, timeout: float = DEFAULT_TIMEOUT) -> Optional[ProcessInfo]:
    """Get process name and user via ``ps``.

    Args:
        pid: Process ID
        run: Command executor
        timeout: Seconds to wait for ps

    Returns:
        ProcessInfo, or None if the process does not exist (anymore)
    """
    result = run('ps', ['-o', 'user=', '-o', 'comm=', '-p', str(pid)], timeout=timeout)
    if result.exit_code != 0:
        return None

    for line in result.stdout.splitlines():
        fields = line.strip().split(None, 1)
        if len(fields) < 2:
            continue
        user, command = fields
        # macOS prints the full executable path
        name = os.path.basename(command.strip()) or command.strip()
        return ProcessInfo(name=name, user=user)

    return None


def lookup_windows(pid: int, run: Executor, timeout: float = DEFAULT_TIMEOUT) -> Optional[ProcessInfo]:
    """Get process name and user via ``tasklist /V``.

    CSV columns: Image Name, PID, Session Name, Session#, Mem Usage,
    Status, User Name, CPU Time, Window Title.
    """
    result = run('tasklist', ['/FI', f'PID eq {pid}', '/FO', 'CSV', '/V', '/NH'], timeout=timeout)
    if result.exit_code != 0:
        return None

    for fields in csv.reader(result.stdout.splitlines()):
        # "INFO: No tasks are running..." has a single field
        if len(fields) < 2 or fields[1].strip() != str(pid):
            continue
        name = fields[0].strip()
        user = fields[6].strip() if len(fields) > 6 else ''
        if not user or user == 'N/A':
            user = 'Unknown'
        return ProcessInfo(name=name or 'Unknown', user=user)

    return None


PROCESS_LOOKUPS: Dict[str, Callable[..., Optional[ProcessInfo]]] = {
    'Windows': lookup_windows,
    'Darwin': lookup_unix,
    'Linux': lookup_unix,
}


class ProcessResolver:
    """Resolve pids to ProcessInfo with the lookup registered for a platform."""

    def __init__(self, system: Optional[str] = None, run: Executor = execute,
                 timeout: float = DEFAULT_TIMEOUT):
        self.system = system or platform.system()
        self.run = run
        self.timeout = timeout
        self._lookup = PROCESS_LOOKUPS.get(self.system)
        if self._lookup is None:
            logger.warning(f"No process lookup registered for {self.system}; "
                           f"process names will be reported as Unknown")

    def lookup(self, pid: Optional[int]) -> Optional[ProcessInfo]:
        """Look up one pid. Any failure degrades to None."""
        if not pid or self._lookup is None:
            return None
        try:
            return self._lookup(pid, self.run, timeout=self.timeout)
        except CommandError as e:
            logger.debug(f"Process lookup for PID {pid} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error looking up PID {pid}")
        return None

    def lookup_many(self, pids: Iterable[Optional[int]]) -> Dict[int, ProcessInfo]:
        """Look up each distinct pid once.

        Returns:
            Dict of pid -> ProcessInfo for the pids that resolved
        """
        found = {}
        for pid in sorted({p for p in pids if p}):
            info = self.lookup(pid)
            if info:
                found[pid] = info
        return found
