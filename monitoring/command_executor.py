"""Run external inspection commands (netstat, ss, lsof, ps, tasklist).

This is the only place GlassNet spawns processes. No parsing happens here.
"""

import subprocess
import logging
from dataclasses import dataclass
from typing import List, Optional

from monitoring.errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one command invocation."""
    stdout: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and bool(self.stdout.strip())


def execute(command: str, args: Optional[List[str]] = None,
            timeout: float = DEFAULT_TIMEOUT) -> CommandResult:
    """Run a command and return its standard output and exit status.

    Args:
        command: Executable name, looked up on PATH
        args: Command-line arguments
        timeout: Seconds to wait before giving up

    Returns:
        CommandResult with decoded stdout and the exit code

    Raises:
        CommandError: If the command is missing, not permitted or times out
    """
    argv = [command] + list(args or [])
    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            errors='replace',
            timeout=timeout
        )
    except FileNotFoundError:
        raise CommandError(command, "command not found")
    except PermissionError:
        raise CommandError(command, "permission denied")
    except subprocess.TimeoutExpired:
        raise CommandError(command, f"timed out after {timeout}s")
    except OSError as e:
        raise CommandError(command, str(e))

    if result.returncode != 0:
        logger.debug(f"{' '.join(argv)} exited with {result.returncode}: {result.stderr.strip()[:200]}")

    return CommandResult(stdout=result.stdout or '', exit_code=result.returncode)
