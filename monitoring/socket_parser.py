"""Socket table parsers, one per command-output dialect.

Every parser is a pure function from raw command output to a list of
SocketTuple objects. Lines that do not fit the dialect's grammar are
skipped; a parser never raises on bad input.

Dialects:
    - netstat-windows: ``netstat -ano`` (Proto Local Foreign State PID)
    - netstat-linux:   ``netstat -tuapn`` (Proto Recv-Q Send-Q Local Foreign State PID/Program)
    - lsof:            ``lsof -i -P -n`` (macOS)
    - ss:              ``ss -tuapn`` (Linux, with users:(("name",pid,fd)) annotations)
"""

import re
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from monitoring.address_utils import split_endpoint

logger = logging.getLogger(__name__)

TRACKED_PROTOCOLS = ('tcp', 'udp')

# ss abbreviates a few states; report them the way netstat/lsof do
STATE_ALIASES = {
    'ESTAB': 'ESTABLISHED',
}

NETSTAT_OWNER_PATTERN = re.compile(r'^\d+/')
SS_OWNER_PATTERN = re.compile(r'users:\(\("([^"]+)",(?:pid=)?(\d+),(?:fd=)?\d+\)')
LSOF_ADDRESS_PATTERN = re.compile(r'(?:^|\s)(TCP|UDP)\s+(\S+)(?:\s+\(([^)]+)\))?\s*$')


@dataclass(frozen=True)
class SocketTuple:
    """One socket as read from a socket table, before enrichment."""
    protocol: str  # tcp, udp
    local_address: str
    local_port: int
    remote_address: str
    remote_port: int
    state: str
    process_id: Optional[int] = None
    # Owner details some dialects print next to the socket
    process_name: Optional[str] = None
    user_name: Optional[str] = None


def normalize_protocol(token: str) -> Optional[str]:
    """Map tcp6/UDP/etc. to 'tcp' or 'udp'; None for anything else."""
    proto = token.lower().rstrip('46')
    return proto if proto in TRACKED_PROTOCOLS else None


def normalize_state(state: Optional[str]) -> str:
    if not state:
        return 'UNKNOWN'
    state = state.upper()
    return STATE_ALIASES.get(state, state)


def _to_pid(text: str) -> Optional[int]:
    try:
        pid = int(text)
    except (TypeError, ValueError):
        return None
    return pid if pid > 0 else None


def _is_header(line: str) -> bool:
    return (
        line.startswith('Active') or line.startswith('Proto')
        or line.startswith('Netid') or line.startswith('COMMAND')
        or line.startswith('State')
    )


# ============================================================================
# Dialect A: netstat numeric tables
# ============================================================================

def parse_netstat_windows(raw_text: str) -> List[SocketTuple]:
    """Parse Windows ``netstat -ano`` output.

    Rows look like::

        TCP    192.168.1.43:54321     142.251.32.5:443       ESTABLISHED     4120
        UDP    0.0.0.0:500            *:*                                    4448

    UDP rows have no state column; their state is reported as UNKNOWN.

    Returns:
        List of SocketTuple
    """
    sockets = []

    for line in raw_text.splitlines():
        line = line.strip()
        if not line or _is_header(line):
            continue

        parts = line.split()
        if len(parts) < 4:
            continue

        protocol = normalize_protocol(parts[0])
        if not protocol:
            continue

        if len(parts) >= 5:
            state, pid_text = parts[3], parts[4]
        else:
            state, pid_text = None, parts[3]

        local_address, local_port = split_endpoint(parts[1])
        remote_address, remote_port = split_endpoint(parts[2])

        sockets.append(SocketTuple(
            protocol=protocol,
            local_address=local_address,
            local_port=local_port,
            remote_address=remote_address,
            remote_port=remote_port,
            state=normalize_state(state),
            process_id=_to_pid(pid_text)
        ))

    return sockets


def _split_program_column(column: str):
    # "812/sshd" -> (812, "sshd"); "1234/sshd: alice [p" -> (1234, "sshd"); "-" -> (None, None)
    pid_text, sep, title = column.partition('/')
    pid = _to_pid(pid_text)
    if pid is None or not sep:
        return None, None
    name = title.split(':', 1)[0].strip()
    return pid, (name or None)


def parse_netstat_linux(raw_text: str) -> List[SocketTuple]:
    """Parse Linux ``netstat -tuapn`` output (fallback when ss is missing).

    Columns: Proto Recv-Q Send-Q Local Foreign [State] PID/Program. UDP
    sockets usually leave State empty, so the column count varies.
    """
    sockets = []

    for line in raw_text.splitlines():
        line = line.strip()
        if not line or _is_header(line):
            continue

        parts = line.split()
        if len(parts) < 5:
            continue

        protocol = normalize_protocol(parts[0])
        if not protocol:
            continue

        # Program titles may contain spaces ("812/avahi-daemon: r"), so the
        # owner column runs from the first pid/program token to end of line
        state = None
        owner = None
        extra = parts[5:]
        for index, token in enumerate(extra):
            if token == '-' or NETSTAT_OWNER_PATTERN.match(token):
                owner = ' '.join(extra[index:])
                extra = extra[:index]
                break
        if extra:
            state = extra[0]

        pid, name = _split_program_column(owner) if owner else (None, None)
        local_address, local_port = split_endpoint(parts[3])
        remote_address, remote_port = split_endpoint(parts[4])

        sockets.append(SocketTuple(
            protocol=protocol,
            local_address=local_address,
            local_port=local_port,
            remote_address=remote_address,
            remote_port=remote_port,
            state=normalize_state(state),
            process_id=pid,
            process_name=name
        ))

    return sockets


# ============================================================================
# Dialect B: lsof open-file listing
# ============================================================================

def parse_lsof_line(line: str) -> Optional[SocketTuple]:
    """Parse one lsof row, or a bare ``PROTO address (STATE)`` fragment.

    Full row::

        firefox 2314 alice 87u IPv4 0x1a2b 0t0 TCP 192.168.1.100:53124->142.250.185.110:443 (ESTABLISHED)

    Listening / unconnected sockets carry only a local endpoint and are
    reported with state LISTEN and remote "*", port 0.
    """
    match = LSOF_ADDRESS_PATTERN.search(line)
    if not match:
        return None

    protocol = match.group(1).lower()
    address_part = match.group(2)
    state = match.group(3)

    command = pid = user = None
    owner_columns = line[:match.start(1)].split()
    if owner_columns:
        # COMMAND PID USER FD TYPE DEVICE SIZE/OFF
        if len(owner_columns) < 3:
            return None
        if len(owner_columns) >= 5 and not owner_columns[4].startswith('IPv'):
            return None
        command = owner_columns[0].replace('\\x20', ' ')
        pid = _to_pid(owner_columns[1])
        user = owner_columns[2]

    if '->' in address_part:
        local, _, remote = address_part.partition('->')
        local_address, local_port = split_endpoint(local)
        remote_address, remote_port = split_endpoint(remote)
        state = normalize_state(state)
    else:
        local_address, local_port = split_endpoint(address_part)
        remote_address, remote_port = '*', 0
        state = 'LISTEN'

    return SocketTuple(
        protocol=protocol,
        local_address=local_address,
        local_port=local_port,
        remote_address=remote_address,
        remote_port=remote_port,
        state=state,
        process_id=pid,
        process_name=command,
        user_name=user
    )


def parse_lsof(raw_text: str) -> List[SocketTuple]:
    """Parse macOS ``lsof -i -P -n`` output."""
    sockets = []
    for line in raw_text.splitlines():
        line = line.strip()
        if not line or _is_header(line):
            continue
        sock = parse_lsof_line(line)
        if sock:
            sockets.append(sock)
    return sockets


# ============================================================================
# Dialect C: ss socket statistics
# ============================================================================

def parse_ss_line(line: str) -> Optional[SocketTuple]:
    """Parse one ``ss -tuapn`` row.

    Example::

        tcp ESTAB 0 0 192.168.1.5:53124 142.250.185.110:443 users:(("firefox",pid=2314,fd=87))

    The optional users:(...) annotation gives the owning pid and process
    name without a separate process lookup.
    """
    parts = line.split()
    if len(parts) < 6:
        return None

    protocol = normalize_protocol(parts[0])
    if not protocol:
        return None

    local_address, local_port = split_endpoint(parts[4])
    remote_address, remote_port = split_endpoint(parts[5])

    pid = name = None
    owner = SS_OWNER_PATTERN.search(line)
    if owner:
        name = owner.group(1)
        pid = _to_pid(owner.group(2))

    return SocketTuple(
        protocol=protocol,
        local_address=local_address,
        local_port=local_port,
        remote_address=remote_address,
        remote_port=remote_port,
        state=normalize_state(parts[1]),
        process_id=pid,
        process_name=name
    )


def parse_ss(raw_text: str) -> List[SocketTuple]:
    """Parse Linux ``ss -tuapn`` output."""
    sockets = []
    for line in raw_text.splitlines():
        line = line.strip()
        if not line or _is_header(line):
            continue
        sock = parse_ss_line(line)
        if sock:
            sockets.append(sock)
    return sockets


# ============================================================================
# Dispatch
# ============================================================================

PARSERS: Dict[str, Callable[[str], List[SocketTuple]]] = {
    'netstat-windows': parse_netstat_windows,
    'netstat-linux': parse_netstat_linux,
    'lsof': parse_lsof,
    'ss': parse_ss,
}

PLATFORM_DIALECTS = {
    'Windows': 'netstat-windows',
    'Darwin': 'lsof',
    'Linux': 'ss',
}


def parse(dialect: str, raw_text: Optional[str]) -> List[SocketTuple]:
    """Parse raw socket-table text.

    Args:
        dialect: Dialect name ('ss', 'lsof', ...) or platform name
                 ('Linux', 'Darwin', 'Windows') for its primary dialect
        raw_text: Command output

    Returns:
        Parsed sockets; unknown dialects and empty input give []
    """
    parser = PARSERS.get(PLATFORM_DIALECTS.get(dialect, dialect))
    if parser is None:
        logger.warning(f"No socket parser for dialect {dialect!r}")
        return []
    if not raw_text:
        return []
    return parser(raw_text)
