"""
SQLite connection & migrations runner for the relay registry.

- ``Database`` hands each thread its own connection (FastAPI runs sync
  handlers in a threadpool), configured with WAL, foreign keys and a busy
  timeout.
- ``fetch_one`` / ``fetch_all`` / ``execute`` / ``transaction`` are the only
  primitives the services use; every ``sqlite3.Error`` is re-raised as
  :class:`relay_registry.errors.StoreError` and never retried.
- ``run_migrations()`` applies the idempotent bundled ``schema.sql``.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from importlib.resources import files as pkg_files
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from ..errors import StoreError
from ..logging import get_logger

log = get_logger(__name__)

Params = Sequence[Any]


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA busy_timeout=5000;")


class Database:
    """
    Thread-local SQLite connections over a single database file.

    Connections are opened lazily per thread and tracked so that
    :meth:`close` can release all of them on shutdown.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: List[sqlite3.Connection] = []

    # --------------------------- connections ---------------------------

    def _open(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.path.as_posix(),
            check_same_thread=False,  # guarded by the thread-local
            isolation_level=None,     # autocommit; explicit transactions below
        )
        _configure_connection(conn)
        with self._lock:
            self._connections.append(conn)
        return conn

    def connection(self) -> sqlite3.Connection:
        """Return the current thread's connection, opening it if needed."""
        conn: Optional[sqlite3.Connection] = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = self._open()
            except sqlite3.Error as e:
                raise StoreError("Could not open database", details={"error": str(e)}) from e
            self._local.conn = conn
        return conn

    def close(self) -> None:
        """Close every connection opened by this instance."""
        with self._lock:
            conns, self._connections = self._connections, []
        for conn in conns:
            try:
                conn.close()
            except sqlite3.Error as e:  # pragma: no cover
                log.warning("db_close_failed", error=str(e))
        self._local = threading.local()

    # ---------------------------- primitives ----------------------------

    def fetch_one(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        try:
            return self.connection().execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(details={"error": str(e)}) from e

    def fetch_all(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        try:
            return self.connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(details={"error": str(e)}) from e

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Run one statement in autocommit mode. Constraint violations propagate as-is."""
        try:
            return self.connection().execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StoreError(details={"error": str(e)}) from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for an explicit transaction:

            with db.transaction() as conn:
                conn.execute("INSERT ...")
                conn.execute("UPDATE ...")

        Commits on success, rolls back on exception. ``sqlite3.Error`` raised
        inside the block surfaces as ``StoreError``; other exceptions propagate
        unchanged after the rollback.
        """
        conn = self.connection()
        try:
            conn.execute("BEGIN IMMEDIATE;")
        except sqlite3.Error as e:
            raise StoreError(details={"error": str(e)}) from e
        try:
            yield conn
            conn.execute("COMMIT;")
        except sqlite3.IntegrityError:
            conn.execute("ROLLBACK;")
            raise
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise StoreError(details={"error": str(e)}) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise

    def ping(self) -> bool:
        try:
            self.connection().execute("SELECT 1;").fetchone()
            return True
        except (sqlite3.Error, StoreError):
            return False


# --------------------------------- Migrations ---------------------------------

def _schema_sql_text() -> str:
    """
    Load the baseline schema SQL bundled at relay_registry/storage/schema.sql.
    The schema MUST be idempotent (CREATE ... IF NOT EXISTS).
    """
    resource = pkg_files("relay_registry.storage").joinpath("schema.sql")
    return resource.read_text(encoding="utf-8")


def run_migrations(db: Database) -> None:
    """Apply the bundled schema. Safe to call multiple times."""
    script = _schema_sql_text()
    try:
        db.connection().executescript(script)
    except sqlite3.Error as e:
        raise StoreError("Schema migration failed", details={"error": str(e)}) from e
    log.info("schema_applied", db_path=str(db.path))


__all__ = ["Database", "run_migrations"]
