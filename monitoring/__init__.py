"""GlassNet Monitoring Module

Local connection discovery and enrichment: which process is talking to
which remote host.

Submodules:
    - command_executor: Run socket/process inspection commands
    - socket_parser: Parse netstat, lsof and ss output into socket tuples
    - address_utils: Endpoint splitting and private/loopback classification
    - scan_strategies: Per-platform scan tool selection
    - process_mapper: Map PIDs to process name and user
    - dns_resolver: Cached reverse DNS lookups
    - dedup: Suppress re-reporting of recently seen sockets
    - connection_monitor: Scan cycle orchestration
    - scheduler: Periodic scanning and status
    - broadcaster: Fan-out of new connections to subscribers
    - config: config.json loading
"""

__version__ = "1.0.0"
__all__ = [
    'command_executor',
    'socket_parser',
    'address_utils',
    'scan_strategies',
    'process_mapper',
    'dns_resolver',
    'dedup',
    'connection_monitor',
    'scheduler',
    'broadcaster',
    'config'
]
