"""SQLite storage for emitted connection records.

Functions:
    - ConnectionStore.persist: Insert one record, return its row id
    - ConnectionStore.get_connections: Filtered, paginated history
    - ConnectionStore.get_statistics: Totals, protocol breakdown, top processes
    - ConnectionStore.clean_old_records: Retention pruning
"""

import os
import sqlite3
import threading
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    process_name TEXT NOT NULL,
    process_id INTEGER,
    user_name TEXT,
    protocol TEXT NOT NULL,
    local_address TEXT,
    local_port INTEGER,
    remote_address TEXT,
    remote_port INTEGER,
    remote_hostname TEXT,
    state TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
)
"""

INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_connections_timestamp ON connections(timestamp)',
    'CREATE INDEX IF NOT EXISTS idx_connections_process_name ON connections(process_name)',
    'CREATE INDEX IF NOT EXISTS idx_connections_remote_address ON connections(remote_address)',
    'CREATE INDEX IF NOT EXISTS idx_connections_protocol ON connections(protocol)',
    'CREATE INDEX IF NOT EXISTS idx_connections_state ON connections(state)',
]


def format_timestamp(ts: float) -> str:
    """Epoch seconds -> 'YYYY-MM-DD HH:MM:SS' in UTC (SQLite datetime format)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')


class ConnectionStore:
    """Connection history in a single SQLite file (or ':memory:')."""

    def __init__(self, db_path: str = os.path.join('data', 'glassnet.db')):
        self.db_path = db_path
        if db_path != ':memory:':
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if db_path != ':memory:':
            try:
                self.conn.execute("PRAGMA journal_mode = WAL;")
            except sqlite3.OperationalError:
                self.conn.execute("PRAGMA journal_mode = DELETE;")
        self._init_schema()
        logger.info(f"Connected to SQLite database: {db_path}")

    def _init_schema(self) -> None:
        with self._lock, self.conn:
            self.conn.execute(SCHEMA)
            for statement in INDEXES:
                self.conn.execute(statement)

    def persist(self, record: Any) -> int:
        """Insert a connection record.

        Args:
            record: ConnectionRecord (or any object with the same attributes)

        Returns:
            Row id of the inserted record
        """
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO connections (
                    timestamp, process_name, process_id, user_name, protocol,
                    local_address, local_port, remote_address, remote_port,
                    remote_hostname, state
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    format_timestamp(record.timestamp or time.time()),
                    record.process_name,
                    record.process_id,
                    record.user_name,
                    record.protocol,
                    record.local_address,
                    record.local_port,
                    record.remote_address,
                    record.remote_port,
                    record.remote_hostname,
                    record.state,
                )
            )
            return cursor.lastrowid

    def get_connections(self, limit: int = 100, offset: int = 0,
                        process_name: Optional[str] = None,
                        protocol: Optional[str] = None,
                        remote_address: Optional[str] = None,
                        state: Optional[str] = None,
                        since: Optional[float] = None) -> List[Dict[str, Any]]:
        """Get recent connections, newest first.

        Args:
            limit: Maximum rows
            offset: Rows to skip
            process_name: Substring match on process name
            protocol: Exact protocol
            remote_address: Exact remote address
            state: Exact state
            since: Only records at or after this epoch time

        Returns:
            List of row dicts; remote_hostname is omitted when NULL
        """
        query = "SELECT * FROM connections WHERE 1=1"
        params: List[Any] = []

        if process_name:
            query += " AND process_name LIKE ?"
            params.append(f"%{process_name}%")
        if protocol:
            query += " AND protocol = ?"
            params.append(protocol)
        if remote_address:
            query += " AND remote_address = ?"
            params.append(remote_address)
        if state:
            query += " AND state = ?"
            params.append(state)
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(format_timestamp(since))

        query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._lock:
            rows = self.conn.execute(query, params).fetchall()

        results = []
        for row in rows:
            data = dict(row)
            if data.get('remote_hostname') is None:
                data.pop('remote_hostname', None)
            results.append(data)
        return results

    def get_unique_processes(self, since: Optional[float] = None) -> List[Dict[str, Any]]:
        """Process names with their record counts over the last day."""
        since = time.time() - 86400 if since is None else since
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT process_name, COUNT(*) AS count FROM connections
                WHERE timestamp >= ?
                GROUP BY process_name ORDER BY count DESC
                """,
                (format_timestamp(since),)
            ).fetchall()
        return [dict(row) for row in rows]

    def get_statistics(self, now: Optional[float] = None) -> Dict[str, Any]:
        """Aggregate statistics over the stored history.

        Returns:
            Dict with total_connections, connections_last_day,
            unique_processes_last_day, protocol_breakdown, top_processes
        """
        now = time.time() if now is None else now
        day_ago = format_timestamp(now - 86400)

        with self._lock:
            total = self.conn.execute("SELECT COUNT(*) FROM connections").fetchone()[0]
            last_day = self.conn.execute(
                "SELECT COUNT(*) FROM connections WHERE timestamp >= ?", (day_ago,)
            ).fetchone()[0]
            unique_processes = self.conn.execute(
                "SELECT COUNT(DISTINCT process_name) FROM connections WHERE timestamp >= ?", (day_ago,)
            ).fetchone()[0]
            protocols = self.conn.execute(
                """
                SELECT protocol, COUNT(*) AS count FROM connections
                WHERE timestamp >= ? GROUP BY protocol ORDER BY count DESC
                """,
                (day_ago,)
            ).fetchall()
            top_processes = self.conn.execute(
                """
                SELECT process_name, COUNT(*) AS count FROM connections
                WHERE timestamp >= ? GROUP BY process_name
                ORDER BY count DESC LIMIT 10
                """,
                (day_ago,)
            ).fetchall()

        return {
            'total_connections': total,
            'connections_last_day': last_day,
            'unique_processes_last_day': unique_processes,
            'protocol_breakdown': [dict(row) for row in protocols],
            'top_processes': [dict(row) for row in top_processes]
        }

    def clean_old_records(self, retention_days: int = 3, now: Optional[float] = None) -> int:
        """Delete records older than the retention period.

        Returns:
            Number of deleted rows
        """
        now = time.time() if now is None else now
        cutoff = format_timestamp(now - retention_days * 86400)
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM connections WHERE timestamp < ?", (cutoff,))
        return cursor.rowcount

    def clear_all(self) -> int:
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM connections")
        logger.info(f"Cleared all {cursor.rowcount} connection records")
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self.conn.close()
