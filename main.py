from monitoring.broadcaster import ConnectionBroadcaster
from monitoring.config import load_config
from monitoring.connection_monitor import ConnectionMonitor
from monitoring.errors import GlassNetError
from monitoring.scheduler import ScanScheduler
from storage.connection_store import ConnectionStore
from tabulate import tabulate
from colorama import Fore, Style, init
from datetime import datetime
import ctypes
import logging
import os
import sys
import time

# Initialize colorama for Windows color support
init(autoreset=True)

logger = logging.getLogger(__name__)


def colorize_state(state):
    """Return colored connection state string."""
    if state in ("ESTABLISHED", "ESTAB"):
        return f"{Fore.GREEN}{state}{Style.RESET_ALL}"
    elif state in ("LISTEN", "LISTENING"):
        return f"{Fore.CYAN}{state}{Style.RESET_ALL}"
    elif state in ("TIME_WAIT", "CLOSE_WAIT", "FIN_WAIT1", "FIN_WAIT2", "CLOSING", "LAST_ACK"):
        return f"{Fore.YELLOW}{state}{Style.RESET_ALL}"
    return state


def format_time(ts):
    if isinstance(ts, (int, float)):
        return datetime.fromtimestamp(ts).strftime("%H:%M:%S")
    return str(ts)


def connection_rows(connections):
    """Build table rows from ConnectionRecord objects or stored row dicts."""
    rows = []
    for conn in connections:
        data = conn.to_dict() if hasattr(conn, "to_dict") else conn
        remote = f"{data['remote_address']}:{data['remote_port']}"
        rows.append([
            format_time(data.get("timestamp")),
            data["protocol"].upper(),
            f"{data['local_address']}:{data['local_port']}",
            remote,
            (data.get("remote_hostname") or "")[:40],
            colorize_state(data["state"]),
            f"{data['process_name']} ({data['process_id']})" if data.get("process_id") else data["process_name"],
            data.get("user_name") or "",
        ])
    return rows


CONNECTION_HEADERS = ["Time", "Proto", "Local", "Remote", "Hostname", "State", "Process", "User"]


def print_batch(batch):
    """Subscriber callback: print a batch of new connections."""
    print(f"\n{Fore.WHITE}{Style.BRIGHT}{len(batch)} new connection(s){Style.RESET_ALL}")
    print(tabulate(connection_rows(batch), headers=CONNECTION_HEADERS, tablefmt="simple"))


def show_history(store, process_name=None, limit=50):
    connections = store.get_connections(limit=limit, process_name=process_name)
    if not connections:
        print("No connections recorded yet.")
        return
    print(tabulate(connection_rows(connections), headers=CONNECTION_HEADERS, tablefmt="grid"))


def show_stats(store):
    stats = store.get_statistics()
    print("\nConnection Statistics:")
    print(f"  {'total_connections':.<30} {stats['total_connections']}")
    print(f"  {'connections_last_day':.<30} {stats['connections_last_day']}")
    print(f"  {'unique_processes_last_day':.<30} {stats['unique_processes_last_day']}")

    if stats["protocol_breakdown"]:
        print("\nProtocols (last 24h):")
        print(tabulate(
            [[p["protocol"].upper(), p["count"]] for p in stats["protocol_breakdown"]],
            headers=["Protocol", "Connections"],
            tablefmt="grid"
        ))

    if stats["top_processes"]:
        print("\nTop Processes (last 24h):")
        print(tabulate(
            [[p["process_name"], p["count"]] for p in stats["top_processes"]],
            headers=["Process", "Connections"],
            tablefmt="grid"
        ))


def print_status(status):
    print("\nMonitor Status:")
    for key, value in status.items():
        print(f"  {key:.<30} {value}")


def is_elevated():
    """Check if running as root (Unix) or Administrator (Windows)."""
    # os.geteuid is not available on Windows
    geteuid = getattr(os, "geteuid", None)
    if geteuid is not None:
        return geteuid() == 0
    try:
        return ctypes.windll.shell32.IsUserAnAdmin() != 0
    except (AttributeError, OSError):
        return False


def warn_if_unprivileged():
    """Log a warning when sockets of other users cannot be attributed."""
    if is_elevated():
        return False
    logger.warning("Not running with administrator/root privileges: "
                   "processes owned by other users will show as Unknown")
    return True


def option_value(argv, name):
    """Return the value following a flag, e.g. --interval 2000."""
    for i, arg in enumerate(argv):
        if arg == name and i + 1 < len(argv):
            return argv[i + 1]
    return None


def main(argv=None):
    """Main entry point for the GlassNet connection monitor.

    Args:
        argv: Command-line arguments (default: sys.argv[1:])

    Returns:
        Process exit code
    """
    argv = sys.argv[1:] if argv is None else argv

    logging.basicConfig(
        level=logging.DEBUG if "--verbose" in argv else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s'
    )

    try:
        config = load_config(option_value(argv, "--config"))
        interval = option_value(argv, "--interval")
        if interval:
            config.interval_ms = int(interval)
        if "--include-loopback" in argv:
            config.include_loopback = True
        if "--no-dns" in argv:
            config.resolve_hostnames = False
        config.validate()
    except (GlassNetError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    store = ConnectionStore(config.database_path)

    try:
        if "--history" in argv:
            show_history(store, process_name=option_value(argv, "--process"))
            return 0
        if "--stats" in argv:
            show_stats(store)
            return 0
        if "--cleanup" in argv:
            deleted = store.clean_old_records(config.retention_days)
            print(f"Removed {deleted} records older than {config.retention_days} days")
            return 0

        broadcaster = ConnectionBroadcaster()
        broadcaster.subscribe(print_batch)

        try:
            monitor = ConnectionMonitor(config, store=store, notifier=broadcaster)
        except GlassNetError as e:
            print(f"{Fore.RED}ERROR: {e}{Style.RESET_ALL}")
            return 1

        print("\n" + "=" * 80)
        print("GLASSNET - LOCAL CONNECTION MONITOR")
        print("=" * 80)
        print(f"Scanning with {monitor.strategy.name} every {config.interval_ms}ms "
              f"(protocols: {', '.join(config.protocols)}, "
              f"loopback: {'on' if config.include_loopback else 'off'}, "
              f"hostnames: {'on' if config.resolve_hostnames else 'off'})")
        warn_if_unprivileged()

        if "--once" in argv:
            monitor.scan_once()
            broadcaster.dispatch_pending()
            print_status(monitor.status())
            monitor.close()
            return 0

        scheduler = ScanScheduler(monitor, store=store)
        broadcaster.start()
        scheduler.start()
        print("Press Ctrl+C to stop.\n")

        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            print("\nStopping...")
        finally:
            scheduler.stop()
            broadcaster.stop()
            print_status(scheduler.status())
            monitor.close()

        print("\n" + "=" * 80)
        print("- All data collected and stored locally")
        print("- No data sent to cloud")
        print("=" * 80)
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    if "--help" in sys.argv or "-h" in sys.argv:
        print("""
╔════════════════════════════════════════════════════════════════════════════╗
║                       GLASSNET CONNECTION MONITOR                          ║
║                                                                            ║
║ Usage:  python main.py [options]                                           ║
║                                                                            ║
║ Options:                                                                   ║
║   --once               Run a single scan and exit                          ║
║   --interval MS        Scan interval in milliseconds (default: 5000)       ║
║   --include-loopback   Also report loopback / LAN traffic                  ║
║   --no-dns             Disable reverse hostname lookups                    ║
║   --history            Show stored connections (--process NAME filters)    ║
║   --stats              Show connection statistics                          ║
║   --cleanup            Delete records older than the retention period      ║
║   --config PATH        Config file (default: config.json)                  ║
║   --verbose            Debug logging                                       ║
║                                                                            ║
╚════════════════════════════════════════════════════════════════════════════╝
""")
        sys.exit(0)

    sys.exit(main())
