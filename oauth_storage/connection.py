"""
Database connection handling.

Turns a ``StorageConfig`` into an open ``sqlite3`` connection and provides
the transaction helper every multi-statement operation runs under.

DSNs use the ``sqlite:<path>`` form (``sqlite::memory:`` for an in-memory
database). With ``persistent_connection`` enabled one connection per DSN is
kept for the life of the process and handed to every caller; it is never a
pool and it is not made thread-safe beyond what sqlite itself provides.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence
from uuid import uuid4

from .config import StorageConfig
from .exceptions import ConfigurationError, StorageError

logger = logging.getLogger(__name__)

DSN_PREFIX = "sqlite:"
MEMORY = ":memory:"

_persistent: dict[tuple[str, bool], sqlite3.Connection] = {}
_persistent_lock = threading.Lock()


def parse_dsn(dsn: str) -> str:
    """Return the database path named by a ``sqlite:<path>`` DSN."""
    if not dsn.startswith(DSN_PREFIX):
        raise ConfigurationError(f"Unsupported DSN: {dsn}")
    path = dsn[len(DSN_PREFIX):]
    if not path:
        raise ConfigurationError("DSN does not name a database")
    return path


def _connect(path: str, enforce_foreign_keys: bool) -> sqlite3.Connection:
    if path != MEMORY:
        db_path = Path(path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"unable to create database directory: {e}") from e

    try:
        conn = sqlite3.connect(
            path,
            timeout=30,
            isolation_level=None,  # autocommit, transactions are explicit
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        if enforce_foreign_keys:
            # there are no unregistered clients, every row needs its Client
            conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error as e:
        logger.error(f"Unable to open database {path}: {e}")
        raise StorageError(f"unable to open database: {e}") from e
    return conn


def open_connection(config: StorageConfig) -> sqlite3.Connection:
    """
    Open (or, in persistent mode, reuse) the connection for ``config``.

    Foreign key enforcement is switched on unless unregistered clients are
    allowed.
    """
    path = parse_dsn(config.dsn)
    enforce = config.enforce_foreign_keys

    if not config.persistent_connection:
        logger.debug(f"Opening database connection: {config.dsn}")
        return _connect(path, enforce)

    key = (config.dsn, enforce)
    with _persistent_lock:
        conn = _persistent.get(key)
        if conn is None:
            logger.debug(f"Opening persistent database connection: {config.dsn}")
            conn = _connect(path, enforce)
            _persistent[key] = conn
        return conn


def is_persistent(conn: sqlite3.Connection) -> bool:
    with _persistent_lock:
        return any(c is conn for c in _persistent.values())


def close_persistent_connections() -> int:
    """Close every persistent connection; returns how many were closed."""
    with _persistent_lock:
        connections = list(_persistent.values())
        _persistent.clear()
    for conn in connections:
        conn.close()
    return len(connections)


def execute(
    conn: sqlite3.Connection,
    sql: str,
    params: Sequence[Any] | Mapping[str, Any] = (),
    *,
    error: str,
) -> sqlite3.Cursor:
    """
    Execute one parameterized statement.

    Any driver error is logged and re-raised as ``StorageError`` carrying
    ``error`` as its message.
    """
    try:
        return conn.execute(sql, params)
    except sqlite3.Error as e:
        logger.error(f"{error}: {e}")
        raise StorageError(f"{error}: {e}") from e


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run the enclosed statements atomically.

    Commits on normal exit and rolls back on any exception, which is then
    re-raised. Inside an already open transaction a savepoint is used, so
    the enclosed block can still be undone on its own.
    """
    if conn.in_transaction:
        name = f"sp_{uuid4().hex}"
        execute(conn, f"SAVEPOINT {name}", error="unable to start transaction")
        try:
            yield conn
        except BaseException:
            try:
                execute(conn, f"ROLLBACK TO SAVEPOINT {name}", error="unable to roll back transaction")
                execute(conn, f"RELEASE SAVEPOINT {name}", error="unable to roll back transaction")
            except StorageError as rollback_error:
                logger.error(f"Rollback to savepoint failed: {rollback_error}")
            # re-raise the block's exception, not the rollback error
            raise
        execute(conn, f"RELEASE SAVEPOINT {name}", error="unable to commit transaction")
        return

    execute(conn, "BEGIN IMMEDIATE", error="unable to start transaction")
    try:
        yield conn
        execute(conn, "COMMIT", error="unable to commit transaction")
    except BaseException:
        if conn.in_transaction:
            logger.warning("Rolling back transaction")
            try:
                execute(conn, "ROLLBACK", error="unable to roll back transaction")
            except StorageError as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")
        raise


__all__ = [
    "close_persistent_connections",
    "execute",
    "is_persistent",
    "open_connection",
    "parse_dsn",
    "transaction",
]
