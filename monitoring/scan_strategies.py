"""Per-platform socket scanning strategies.

Each strategy knows which inspection tool to run on its platform and which
parser dialect reads the output. The strategy for the running platform is
picked once at startup from STRATEGIES.
"""

import platform
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from monitoring.command_executor import CommandResult, execute
from monitoring.errors import CommandError, UnsupportedPlatformError
from monitoring.socket_parser import SocketTuple, parse

logger = logging.getLogger(__name__)

Executor = Callable[..., CommandResult]


@dataclass(frozen=True)
class RawScan:
    """Unparsed output of one socket-table tool."""
    tool: str
    dialect: str
    text: str


class ScanStrategy:
    """Run one platform's socket-table tool."""

    name = 'base'
    command = ''
    args: List[str] = []
    dialect = ''
    # Treat a non-zero exit as unusable even when something was printed
    require_success = False

    def __init__(self, run: Executor = execute, timeout: float = 10):
        self.run = run
        self.timeout = timeout

    def _run_tool(self, command: str, args: List[str], require_success: bool) -> Optional[str]:
        """Run a tool; return its output if usable, else None."""
        try:
            result = self.run(command, args, timeout=self.timeout)
        except CommandError as e:
            logger.warning(f"Socket scan with {command} failed: {e}")
            return None

        if not result.stdout.strip():
            logger.warning(f"{command} exited with {result.exit_code} and no output")
            return None
        if result.exit_code != 0:
            if require_success:
                logger.warning(f"{command} exited with {result.exit_code}")
                return None
            # netstat/lsof exit non-zero on partial permission errors but
            # still print the sockets they could read
            logger.debug(f"{command} exited with {result.exit_code}, using partial output")
        return result.stdout

    def collect(self) -> Optional[RawScan]:
        """Run the tool.

        Returns:
            RawScan, or None when the tool produced nothing usable
        """
        output = self._run_tool(self.command, self.args, self.require_success)
        if output is None:
            return None
        return RawScan(tool=self.command, dialect=self.dialect, text=output)

    def scan(self) -> List[SocketTuple]:
        """Collect and parse in one step."""
        raw = self.collect()
        if raw is None:
            return []
        return parse(raw.dialect, raw.text)


class WindowsNetstatStrategy(ScanStrategy):
    name = 'netstat'
    command = 'netstat'
    args = ['-ano']
    dialect = 'netstat-windows'


class MacLsofStrategy(ScanStrategy):
    name = 'lsof'
    command = 'lsof'
    args = ['-i', '-P', '-n']
    dialect = 'lsof'


class LinuxSsStrategy(ScanStrategy):
    """ss first; netstat once if ss is missing, fails or prints nothing."""

    name = 'ss'
    command = 'ss'
    args = ['-tuapn']
    dialect = 'ss'
    require_success = True

    fallback_command = 'netstat'
    fallback_args = ['-tuapn']
    fallback_dialect = 'netstat-linux'

    def collect(self) -> Optional[RawScan]:
        raw = super().collect()
        if raw is not None:
            return raw

        logger.info(f"Falling back from {self.command} to {self.fallback_command}")
        output = self._run_tool(self.fallback_command, self.fallback_args, require_success=False)
        if output is None:
            return None
        return RawScan(tool=self.fallback_command, dialect=self.fallback_dialect, text=output)


STRATEGIES: Dict[str, Type[ScanStrategy]] = {
    'Windows': WindowsNetstatStrategy,
    'Darwin': MacLsofStrategy,
    'Linux': LinuxSsStrategy,
}


def select_strategy(system: Optional[str] = None, run: Executor = execute,
                    timeout: float = 10) -> ScanStrategy:
    """Pick the scan strategy for a platform.

    Args:
        system: platform.system() value; detected when omitted
        run: Command executor handed to the strategy
        timeout: Per-command timeout in seconds

    Raises:
        UnsupportedPlatformError: If no strategy is registered
    """
    system = system or platform.system()
    strategy_cls = STRATEGIES.get(system)
    if strategy_cls is None:
        raise UnsupportedPlatformError(
            f"No socket scan strategy for platform {system!r} "
            f"(supported: {', '.join(sorted(STRATEGIES))})"
        )
    return strategy_cls(run=run, timeout=timeout)
