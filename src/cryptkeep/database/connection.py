"""SQLite access for the keeper: per-thread connections and one writer at a time."""

from contextlib import closing
from pathlib import Path
import sqlite3
import threading

from .schema import get_init_schema
from ..core.exceptions import KeeperCorruptError


class DatabaseConnection:
    """Owns the keeper database file.

    Every thread gets its own SQLite connection (readers never share a cursor).
    Writers go through :meth:`get_transaction_context`, which holds an
    in-process lock for the whole ``BEGIN IMMEDIATE`` .. ``COMMIT`` span.
    """

    __slots__ = ("db_path", "_local", "_lock", "_write_lock", "_initialized", "_connections")

    def __init__(self, db_path="./cryptkeep.db"):
        self.db_path = Path(db_path)
        self._local = threading.local()
        # guards _connections and first-time schema creation
        self._lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._initialized = False
        self._connections = []

    def initialize(self):
        """Create the schema on first use; KeeperCorruptError if the file is not a keeper."""
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = self._get_connection()
                conn.execute("PRAGMA journal_mode = WAL")
                with self._write_lock:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        for statement in get_init_schema():
                            conn.execute(statement)
                    except sqlite3.Error:
                        conn.execute("ROLLBACK")
                        raise
                    conn.execute("COMMIT")
            except sqlite3.DatabaseError as e:
                self._close_all()
                raise KeeperCorruptError(self.db_path, e) from e
            self._initialized = True

    def _get_connection(self):
        conn = getattr(self._local, "connection", None)
        if conn is None:
            # autocommit mode; transactions are opened explicitly
            conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None, timeout=30.0
            )
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def get_transaction_context(self):
        """Write transaction holding the writer lock until commit or rollback."""
        return TransactionContext(self._get_connection(), self._write_lock)

    def execute(self, query, params=None):
        """Run one mutating statement in its own transaction; returns rows touched."""
        try:
            with self.get_transaction_context() as cursor:
                cursor.execute(query, params or ())
                return cursor.rowcount
        except sqlite3.IntegrityError:
            # constraint violations are the caller's to interpret
            raise
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db_path, e) from e

    def fetch_one(self, query, params=None):
        rows = self._fetch(query, params, limit=1)
        return rows[0] if rows else None

    def fetch_all(self, query, params=None):
        return self._fetch(query, params)

    def _fetch(self, query, params=None, limit=None):
        try:
            with closing(self._get_connection().cursor()) as cursor:
                cursor.execute(query, params or ())
                rows = cursor.fetchmany(limit) if limit else cursor.fetchall()
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db_path, e) from e
        return [dict(row) for row in rows]

    def get_version(self):
        """Schema version stamped in the file, 0 if there is none."""
        try:
            row = self.fetch_one("SELECT MAX(version) AS version FROM schema_version")
        except KeeperCorruptError:
            return 0
        return (row or {}).get("version") or 0

    @property
    def write_lock(self):
        return self._write_lock

    def close(self):
        """Close every connection opened through this object; initialize() may run again."""
        self._close_all()
        self._initialized = False

    def _close_all(self):
        with self._lock:
            conns, self._connections = self._connections, []
        for conn in conns:
            try:
                conn.close()
            except sqlite3.Error:
                pass
        self._local = threading.local()


class TransactionContext:
    """BEGIN IMMEDIATE on enter; COMMIT on clean exit, ROLLBACK otherwise.

    ``BEGIN IMMEDIATE`` takes SQLite's reserved lock on the database file up
    front, so two processes never interleave writes; the in-process lock keeps
    worker threads of one pipeline in line before they reach SQLite.
    """

    __slots__ = ("connection", "cursor", "lock")

    def __init__(self, connection, lock):
        self.connection = connection
        self.cursor = None
        self.lock = lock

    def __enter__(self):
        self.lock.acquire()
        try:
            self.cursor = self.connection.cursor()
            self.cursor.execute("BEGIN IMMEDIATE")
        except BaseException:
            self.lock.release()
            raise
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.connection.execute("COMMIT" if exc_type is None else "ROLLBACK")
        finally:
            self.cursor.close()
            self.lock.release()
