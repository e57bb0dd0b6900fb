import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from core.exceptions import ConflictError, DatabaseError, StoreUnavailableError
from core.types import DatabaseResult
from config.app_config import get_config

_BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")

class Database:
    """Handles all low-level interactions with the SQLite database."""

    # Connection pools per database file
    _pools: Dict[str, queue.Queue] = {}
    _locks: Dict[str, threading.Lock] = {}
    _registry_lock = threading.Lock()

    def __init__(self, db_file: Optional[str] = None, pool_size: Optional[int] = None,
                 timeout: Optional[float] = None) -> None:
        """Initialize the database connection pool."""
        if db_file is None:
            db_config = get_config().database
            db_file = db_config.path
            pool_size = pool_size or db_config.pool_size
            timeout = timeout if timeout is not None else db_config.timeout
        pool_size = pool_size or self._calculate_pool_size()
        timeout = timeout if timeout is not None else 5.0

        self.db_file = db_file
        self.pool_size = pool_size
        self.timeout = timeout
        os.makedirs(os.path.dirname(os.path.abspath(self.db_file)), exist_ok=True)

        # Ensure a pool exists for this database file
        with Database._registry_lock:
            if db_file not in Database._locks:
                Database._locks[db_file] = threading.Lock()
        self._ensure_pool()

    # Internal helpers -------------------------------------------------

    def _ensure_pool(self) -> None:
        """Create a connection pool for the database file if needed."""
        if self.db_file in Database._pools:
            return
        with Database._locks[self.db_file]:
            if self.db_file in Database._pools:
                return
            pool = queue.Queue(maxsize=self.pool_size)
            try:
                for _ in range(pool.maxsize):
                    pool.put(self._open_connection())
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to open database '{self.db_file}': {e}")
            Database._pools[self.db_file] = pool

    def _calculate_pool_size(self) -> int:
        """Determine an appropriate connection pool size."""
        cores = os.cpu_count() or 1
        # Provide multiple connections per core but avoid excessive handles
        return max(5, min(100, cores * 5))

    def _open_connection(self) -> sqlite3.Connection:
        # Autocommit mode; multi-statement work goes through transaction()
        conn = sqlite3.connect(
            self.db_file,
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @staticmethod
    def translate_error(error: sqlite3.Error) -> DatabaseError:
        """Map a driver error onto the store error taxonomy."""
        message = str(error).lower()
        if isinstance(error, sqlite3.OperationalError) and any(m in message for m in _BUSY_MARKERS):
            return ConflictError(f"Concurrent update conflict: {error}")
        return StoreUnavailableError(f"Database operation failed: {error}")

    @contextmanager
    def _acquire(self) -> Iterator[sqlite3.Connection]:
        """Borrow a pooled connection, failing fast when none frees up in time."""
        self._ensure_pool()
        try:
            conn = Database._pools[self.db_file].get(timeout=self.timeout)
        except queue.Empty:
            raise StoreUnavailableError(
                f"No database connection available within {self.timeout}s"
            )
        try:
            yield conn
        finally:
            Database._pools[self.db_file].put(conn)

    # Public API -------------------------------------------------------

    def execute_query(self, query: str, params: Tuple = ()) -> DatabaseResult:
        """
        Executes a single SQL statement.

        Args:
            query (str): The SQL query to execute.
            params (tuple): The parameters to substitute into the query.

        Returns:
            list: A list of rows for SELECT queries, otherwise an empty list.
        """
        with self._acquire() as conn:
            try:
                cursor = conn.execute(query, params)
                if query.strip().upper().startswith("SELECT"):
                    return [dict(row) for row in cursor.fetchall()]
                return []
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise self.translate_error(e)

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Executes a data-modifying statement and returns the affected row count."""
        with self._acquire() as conn:
            try:
                return conn.execute(query, params).rowcount
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise self.translate_error(e)

    def execute_script(self, script: str) -> None:
        """
        Executes a multi-statement SQL script.

        Args:
            script (str): The SQL script to execute.
        """
        with self._acquire() as conn:
            try:
                conn.executescript(script)
            except sqlite3.Error as e:
                raise self.translate_error(e)

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """
        Run a short transaction on one pooled connection.

        ``BEGIN IMMEDIATE`` takes the write lock up front so a read-check-write
        sequence inside the block cannot interleave with another writer.
        Integrity errors are re-raised unchanged for the caller to interpret.
        """
        with self._acquire() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            except sqlite3.Error as e:
                raise self.translate_error(e)
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                raise
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise self.translate_error(e)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def ping(self) -> bool:
        """Check the store answers a trivial query."""
        self.execute_query("SELECT 1 AS ok")
        return True

    def cleanup_pool(self) -> None:
        """Close every pooled connection for this database file."""
        with Database._locks[self.db_file]:
            pool = Database._pools.pop(self.db_file, None)
            if pool is None:
                return
            while True:
                try:
                    conn = pool.get_nowait()
                except queue.Empty:
                    break
                conn.close()
