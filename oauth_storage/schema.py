"""
Schema creation, versioning and forward migration.

The stored schema version lives in the single-row ``Version`` table.
``init_database`` builds the baseline schema; every later change is a
migration step registered in ``MIGRATIONS`` under the version it starts
from. ``update_database`` walks the registry from the stored version until
no step applies, so an unknown or future version is left alone. There is no
downgrade path.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Callable, Mapping, Optional

from .connection import execute, transaction
from .exceptions import StorageError
from .models import WriteOutcome

logger = logging.getLogger(__name__)

BASELINE_VERSION = 2012060601

MigrationStep = Callable[[sqlite3.Connection], None]

# source version -> (target version, step)
MIGRATIONS: dict[int, tuple[int, MigrationStep]] = {}

BASELINE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS Version (
        version INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Client (
        id VARCHAR(64) NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        secret TEXT DEFAULT NULL,
        redirect_uri TEXT NOT NULL,
        type TEXT NOT NULL,
        PRIMARY KEY (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ResourceOwner (
        id VARCHAR(64) NOT NULL,
        display_name TEXT NOT NULL,
        PRIMARY KEY (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS AccessToken (
        access_token VARCHAR(64) NOT NULL,
        client_id VARCHAR(64) NOT NULL,
        resource_owner_id VARCHAR(64) NOT NULL,
        issue_time INTEGER DEFAULT NULL,
        expires_in INTEGER DEFAULT NULL,
        scope TEXT NOT NULL,
        PRIMARY KEY (access_token),
        FOREIGN KEY (client_id) REFERENCES Client (id),
        FOREIGN KEY (resource_owner_id) REFERENCES ResourceOwner (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS RefreshToken (
        refresh_token VARCHAR(64) NOT NULL,
        client_id VARCHAR(64) NOT NULL,
        resource_owner_id VARCHAR(64) NOT NULL,
        scope TEXT NOT NULL,
        PRIMARY KEY (refresh_token),
        FOREIGN KEY (client_id) REFERENCES Client (id),
        FOREIGN KEY (resource_owner_id) REFERENCES ResourceOwner (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS Approval (
        client_id VARCHAR(64) NOT NULL,
        resource_owner_id VARCHAR(64) NOT NULL,
        scope TEXT NOT NULL,
        FOREIGN KEY (client_id) REFERENCES Client (id),
        FOREIGN KEY (resource_owner_id) REFERENCES ResourceOwner (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS AuthorizationCode (
        authorization_code VARCHAR(64) NOT NULL,
        client_id VARCHAR(64) NOT NULL,
        resource_owner_id VARCHAR(64) NOT NULL,
        redirect_uri TEXT DEFAULT NULL,
        issue_time INTEGER DEFAULT NULL,
        scope TEXT NOT NULL,
        PRIMARY KEY (authorization_code),
        FOREIGN KEY (client_id) REFERENCES Client (id),
        FOREIGN KEY (resource_owner_id) REFERENCES ResourceOwner (id)
    )
    """,
)


class SchemaManager:
    """Owns the schema and its version record for one connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        migrations: Optional[Mapping[int, tuple[int, MigrationStep]]] = None,
    ):
        self._conn = conn
        self.migrations = dict(MIGRATIONS if migrations is None else migrations)
        for source, (target, _step) in self.migrations.items():
            if target <= source:
                raise ValueError(f"Migration from {source} must move forward, not to {target}")

    def init_database(self) -> None:
        """
        Create every table that does not exist yet and reset the version
        record to the baseline.

        Later schema changes are never made here, only in migration steps.
        """
        with transaction(self._conn):
            for ddl in BASELINE_TABLES:
                execute(self._conn, ddl, error="unable to create table")
            execute(self._conn, "DELETE FROM Version", error="unable to reset database version")
            execute(
                self._conn,
                "INSERT INTO Version (version) VALUES (?)",
                (BASELINE_VERSION,),
                error="unable to reset database version",
            )
        logger.info(f"Database initialized at version {BASELINE_VERSION}")

    def get_database_version(self) -> int:
        row = execute(
            self._conn, "SELECT version FROM Version", error="unable to get database version"
        ).fetchone()
        if row is None:
            raise StorageError("unable to get database version: no version recorded")
        return int(row["version"])

    def set_database_version(self, version: int) -> WriteOutcome:
        cursor = execute(
            self._conn,
            "UPDATE Version SET version = ?",
            (version,),
            error="unable to update database version",
        )
        return WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.UPDATED)

    def pending_migrations(self, version: Optional[int] = None) -> list[int]:
        """Target versions ``update_database`` would step through, in order."""
        if version is None:
            version = self.get_database_version()
        targets = []
        while version in self.migrations:
            version = self.migrations[version][0]
            targets.append(version)
        return targets

    def update_database(self) -> int:
        """
        Apply every migration step reachable from the stored version.

        Each step and its version bump commit together or not at all; a
        failing step leaves the database at the last completed version.
        Returns the version the database ends at.
        """
        version = self.get_database_version()
        while version in self.migrations:
            target, step = self.migrations[version]
            logger.info(f"Migrating database from version {version} to {target}")
            try:
                with transaction(self._conn):
                    step(self._conn)
                    if not self.set_database_version(target):
                        raise StorageError(f"unable to update database version to {target}")
            except sqlite3.Error as e:
                logger.error(f"Migration to version {target} failed: {e}")
                raise StorageError(f"unable to migrate database to version {target}: {e}") from e
            version = target
        logger.debug(f"Database is at version {version}")
        return version


__all__ = [
    "BASELINE_TABLES",
    "BASELINE_VERSION",
    "MIGRATIONS",
    "MigrationStep",
    "SchemaManager",
]
