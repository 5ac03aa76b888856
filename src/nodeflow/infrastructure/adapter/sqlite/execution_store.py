import sqlite3
import threading

import msgspec

from nodeflow.application.port import ExecutionStore
from nodeflow.domain.entity import ExecutionLogEntry, ExecutionRecord
from nodeflow.domain.error import ExecutionNotFoundError


class SQLiteExecutionStore(ExecutionStore):
    """SQLite-based store for execution records and their logs."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize the SQLite execution store.

        :param db_path: Path to SQLite database file (defaults to in-memory)
        :type db_path: str
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.Lock()
        self._init_database()

    def _get_connection(self):
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def _init_database(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_ref TEXT NOT NULL,
                status TEXT NOT NULL,
                record TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS execution_logs (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id TEXT NOT NULL,
                entry TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_execution_logs_execution ON execution_logs (execution_id)")
        conn.commit()

    def save(self, record: ExecutionRecord):
        """
        Insert or replace a record.

        :param record: The record to store
        :type record: ExecutionRecord
        """
        record_json = msgspec.json.encode(record).decode("utf-8")
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "INSERT INTO executions (id, workflow_ref, status, record) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET status = excluded.status, record = excluded.record",
                (record.id, record.workflow_ref, record.status.value, record_json),
            )
            conn.commit()

    def get(self, execution_id: str) -> ExecutionRecord:
        """
        Retrieve a record by id.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: The stored record
        :rtype: ExecutionRecord
        :raises ExecutionNotFoundError: If the id is unknown
        """
        with self._lock:
            cursor = self._get_connection().execute("SELECT record FROM executions WHERE id = ?", (execution_id,))
            row = cursor.fetchone()

        if row is None:
            raise ExecutionNotFoundError(f"Execution '{execution_id}' not found")
        return msgspec.json.decode(row[0].encode("utf-8"), type=ExecutionRecord)

    def append_log(self, entry: ExecutionLogEntry):
        entry_json = msgspec.json.encode(entry).decode("utf-8")
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "INSERT INTO execution_logs (execution_id, entry) VALUES (?, ?)",
                (entry.execution_id, entry_json),
            )
            conn.commit()

    def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT entry FROM execution_logs WHERE execution_id = ? ORDER BY seq", (execution_id,)
            )
            rows = cursor.fetchall()
        return [msgspec.json.decode(row[0].encode("utf-8"), type=ExecutionLogEntry) for row in rows]

    def list_ids(self, workflow_ref: str | None = None) -> list[str]:
        """
        Get the stored execution ids, optionally for one workflow.

        :param workflow_ref: Restrict to this workflow
        :type workflow_ref: str | None
        :returns: List of execution identifiers
        :rtype: list[str]
        """
        with self._lock:
            conn = self._get_connection()
            if workflow_ref is None:
                cursor = conn.execute("SELECT id FROM executions ORDER BY rowid")
            else:
                cursor = conn.execute(
                    "SELECT id FROM executions WHERE workflow_ref = ? ORDER BY rowid", (workflow_ref,)
                )
            rows = cursor.fetchall()
        return [row[0] for row in rows]

    def delete(self, execution_id: str) -> bool:
        """
        Delete a record and its log.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: True if a record was deleted, False otherwise
        :rtype: bool
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM executions WHERE id = ?", (execution_id,))
            conn.execute("DELETE FROM execution_logs WHERE execution_id = ?", (execution_id,))
            conn.commit()
        return cursor.rowcount > 0

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __del__(self):
        """Close the database connection on cleanup."""
        if self._conn:
            self._conn.close()
