"""
SQLite-based queue provider
Persists hosts, queues and messages so the CLI works without a network
transport. Handles concurrent access from worker threads.
"""
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import List, Optional

from dateutil import parser as date_parser

from .addressing import (
    LOCAL_HOST,
    direct_format_name,
    is_local_host,
    is_scheme_qualified,
    private_queue_path,
)
from .errors import ProviderError, ProviderErrorCode
from .models import Credentials, QueueMessage, utcnow
from .provider import ProviderQueue, QueueProvider, resolve_queue_key


class SqliteProvider(QueueProvider):
    """
    SQLite-backed queue provider.
    Thread-safe: every worker thread gets its own database connection.
    """

    def __init__(self, db_path: str = "mqctl.db"):
        """
        Initialize provider with SQLite database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection"""
        if not hasattr(self._local, 'connection'):
            connection = sqlite3.connect(
                self.db_path,
                isolation_level=None,  # autocommit mode
                check_same_thread=False
            )
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA busy_timeout=5000")
            self._local.connection = connection
            with self._connections_lock:
                self._connections.append(connection)
        return self._local.connection

    def _init_db(self):
        """Create tables if they don't exist"""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS hosts (
                name TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS queues (
                host TEXT NOT NULL,
                name TEXT NOT NULL,
                label TEXT DEFAULT '',
                transactional INTEGER DEFAULT 0,
                use_journal INTEGER DEFAULT 1,
                created_at TEXT NOT NULL,
                PRIMARY KEY (host, name)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                host TEXT NOT NULL,
                queue TEXT NOT NULL,
                journal INTEGER DEFAULT 0,
                body BLOB,
                label TEXT DEFAULT '',
                created_at TEXT NOT NULL
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_queue ON messages(host, queue, journal)")

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions"""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    # Administration

    def add_host(self, host: str) -> str:
        """
        Register a host.

        Returns:
            The host key the provider stores it under
        """
        key = _host_key(host)
        with self._transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO hosts (name, created_at) VALUES (?, ?)",
                         (key, utcnow().isoformat()))
        return key

    def list_hosts(self) -> List[str]:
        conn = self._get_connection()
        return [row[0] for row in conn.execute("SELECT name FROM hosts ORDER BY name")]

    def create_queue(self, host: str, name: str, label: str = "",
                     transactional: bool = False, use_journal: bool = True) -> ProviderQueue:
        """
        Create a private queue, registering the host if needed.

        Returns:
            ProviderQueue for the new (or already existing) queue
        """
        key = self.add_host(host)
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO queues (host, name, label, transactional, use_journal, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (key, name.lower(), label, int(transactional), int(use_journal), utcnow().isoformat()))
        return self._queue_info(self._get_connection(), key, name.lower())

    # QueueProvider

    def list_private_queues(self, host: str, credentials: Optional[Credentials] = None) -> List[ProviderQueue]:
        key = _host_key(host)
        conn = self._get_connection()
        self._check_host(conn, key)
        cursor = conn.execute("SELECT name FROM queues WHERE host = ? ORDER BY created_at, name", (key,))
        return [self._queue_info(conn, key, row[0]) for row in cursor.fetchall()]

    def open_queue(self, address: str) -> ProviderQueue:
        host, name, _ = resolve_queue_key(address)
        conn = self._get_connection()
        self._require_queue(conn, host, name, address)
        return self._queue_info(conn, host, name)

    def exists(self, path: str) -> bool:
        if is_scheme_qualified(path):
            raise ProviderError(ProviderErrorCode.ILLEGAL_FORMAT_NAME,
                                "Existence checks do not accept format names")
        host, name, _ = resolve_queue_key(path)
        conn = self._get_connection()
        self._check_host(conn, host)
        row = conn.execute("SELECT 1 FROM queues WHERE host = ? AND name = ?", (host, name)).fetchone()
        return row is not None

    def count_messages(self, address: str) -> int:
        host, name, is_journal = resolve_queue_key(address)
        conn = self._get_connection()
        self._require_queue(conn, host, name, address)
        row = conn.execute(
            "SELECT COUNT(*) FROM messages WHERE host = ? AND queue = ? AND journal = ?",
            (host, name, int(is_journal)),
        ).fetchone()
        return row[0]

    def peek_messages(self, address: str, limit: Optional[int] = None) -> List[QueueMessage]:
        host, name, is_journal = resolve_queue_key(address)
        conn = self._get_connection()
        self._require_queue(conn, host, name, address)
        cursor = conn.execute("""
            SELECT id, body, label, created_at FROM messages
            WHERE host = ? AND queue = ? AND journal = ?
            ORDER BY created_at, rowid
            LIMIT ?
        """, (host, name, int(is_journal), limit if limit else -1))
        path = private_queue_path(host, name)
        return [self._row_to_message(path, row) for row in cursor.fetchall()]

    def receive_message(self, address: str) -> QueueMessage:
        """
        Remove and return the oldest message.
        Journaled queues keep a copy in their journal.
        """
        host, name, is_journal = resolve_queue_key(address)
        with self._transaction() as conn:
            self._require_queue(conn, host, name, address)
            row = conn.execute("""
                SELECT id, body, label, created_at FROM messages
                WHERE host = ? AND queue = ? AND journal = ?
                ORDER BY created_at, rowid
                LIMIT 1
            """, (host, name, int(is_journal))).fetchone()

            if row is None:
                raise ProviderError(ProviderErrorCode.IO_TIMEOUT, f"No message available in {address}")

            use_journal = conn.execute(
                "SELECT use_journal FROM queues WHERE host = ? AND name = ?", (host, name)).fetchone()[0]
            if is_journal or not use_journal:
                conn.execute("DELETE FROM messages WHERE id = ?", (row[0],))
            else:
                conn.execute("UPDATE messages SET journal = 1 WHERE id = ?", (row[0],))

        return self._row_to_message(private_queue_path(host, name), row)

    def send_message(self, address: str, body: bytes, label: str = "") -> str:
        host, name, is_journal = resolve_queue_key(address)
        if is_journal:
            raise ProviderError(ProviderErrorCode.ACCESS_DENIED, "Journal queues are read-only")
        message_id = uuid.uuid4().hex
        with self._transaction() as conn:
            self._require_queue(conn, host, name, address)
            conn.execute("""
                INSERT INTO messages (id, host, queue, journal, body, label, created_at)
                VALUES (?, ?, ?, 0, ?, ?, ?)
            """, (message_id, host, name, sqlite3.Binary(body), label, utcnow().isoformat()))
        return message_id

    def purge(self, address: str) -> int:
        host, name, is_journal = resolve_queue_key(address)
        with self._transaction() as conn:
            self._require_queue(conn, host, name, address)
            cursor = conn.execute(
                "DELETE FROM messages WHERE host = ? AND queue = ? AND journal = ?",
                (host, name, int(is_journal)),
            )
            return cursor.rowcount

    def close(self):
        """Close every database connection opened by this provider"""
        with self._connections_lock:
            for connection in self._connections:
                connection.close()
            self._connections.clear()
        if hasattr(self._local, 'connection'):
            del self._local.connection

    # Helpers

    def _check_host(self, conn: sqlite3.Connection, host: str):
        row = conn.execute("SELECT 1 FROM hosts WHERE name = ?", (host,)).fetchone()
        if row is None:
            raise ProviderError(ProviderErrorCode.REMOTE_MACHINE_NOT_AVAILABLE,
                                f"Remote computer '{host}' is not available")

    def _require_queue(self, conn: sqlite3.Connection, host: str, name: str, address: str):
        self._check_host(conn, host)
        row = conn.execute("SELECT 1 FROM queues WHERE host = ? AND name = ?", (host, name)).fetchone()
        if row is None:
            raise ProviderError(ProviderErrorCode.QUEUE_NOT_FOUND, f"Queue not found: {address}")

    def _queue_info(self, conn: sqlite3.Connection, host: str, name: str) -> ProviderQueue:
        row = conn.execute(
            "SELECT label, transactional, use_journal FROM queues WHERE host = ? AND name = ?",
            (host, name),
        ).fetchone()
        return ProviderQueue(
            path=private_queue_path(host, name),
            format_name=direct_format_name(host, name),
            host=host,
            label=row[0] or "",
            transactional=bool(row[1]),
            use_journal=bool(row[2]),
        )

    def _row_to_message(self, path: str, row: tuple) -> QueueMessage:
        """Convert database row to QueueMessage object"""
        return QueueMessage(
            id=row[0],
            address=path,
            body=bytes(row[1] or b""),
            label=row[2] or "",
            arrived_at=date_parser.isoparse(row[3]),
        )


def _host_key(host: str) -> str:
    return LOCAL_HOST if is_local_host(host) else host.strip().lower()
