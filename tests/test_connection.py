"""
Tests for DSN handling, persistent connections and transactions.
"""

import sqlite3

import pytest

from oauth_storage import (
    ConfigurationError,
    OAuthStorage,
    StorageConfig,
    StorageError,
    close_persistent_connections,
    open_connection,
    transaction,
)
from oauth_storage.connection import parse_dsn


class TestParseDsn:

    def test_file_path(self):
        assert parse_dsn("sqlite:/var/lib/oauth.sqlite") == "/var/lib/oauth.sqlite"

    def test_memory(self):
        assert parse_dsn("sqlite::memory:") == ":memory:"

    @pytest.mark.parametrize("dsn", ["mysql:host=localhost", "sqlite:", ""])
    def test_rejects_other_dsns(self, dsn):
        with pytest.raises(ConfigurationError):
            parse_dsn(dsn)


class TestOpenConnection:

    def test_creates_missing_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "oauth.sqlite"
        conn = open_connection(StorageConfig(dsn=f"sqlite:{path}"))
        try:
            assert path.parent.is_dir()
        finally:
            conn.close()

    def test_foreign_keys_on_by_default(self, storage_config):
        conn = open_connection(storage_config)
        try:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        finally:
            conn.close()

    def test_foreign_keys_off_for_unregistered_clients(self, db_path):
        conn = open_connection(StorageConfig(dsn=f"sqlite:{db_path}", allow_unregistered_clients=True))
        try:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 0
        finally:
            conn.close()

    def test_non_persistent_connections_are_distinct(self, storage_config):
        first = open_connection(storage_config)
        second = open_connection(storage_config)
        try:
            assert first is not second
        finally:
            first.close()
            second.close()

    def test_unopenable_database_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError):
            open_connection(StorageConfig(dsn=f"sqlite:{blocker / 'oauth.sqlite'}"))


class TestPersistentConnections:

    def test_reused_across_storage_sessions(self, db_path):
        config = StorageConfig(dsn=f"sqlite:{db_path}", persistent_connection=True)

        with OAuthStorage(config) as first:
            first.init_database()
            conn = first.connection
        # closing the session leaves the shared connection open
        with OAuthStorage(config) as second:
            assert second.connection is conn
            assert second.get_database_version() > 0

        assert close_persistent_connections() == 1
        assert close_persistent_connections() == 0

    def test_separate_connection_per_foreign_key_mode(self, db_path):
        strict = StorageConfig(dsn=f"sqlite:{db_path}", persistent_connection=True)
        loose = StorageConfig(dsn=f"sqlite:{db_path}", persistent_connection=True, allow_unregistered_clients=True)

        assert open_connection(strict) is not open_connection(loose)
        assert open_connection(strict) is open_connection(strict)

    def test_supplied_connection_is_not_closed(self, storage_config):
        conn = open_connection(storage_config)
        try:
            with OAuthStorage(connection=conn) as s:
                s.init_database()
            assert conn.execute("SELECT COUNT(*) FROM Version").fetchone()[0] == 1
        finally:
            conn.close()


class TestTransaction:

    def test_commits_on_success(self, storage, count_rows):
        conn = storage.connection
        with transaction(conn):
            conn.execute("INSERT INTO ResourceOwner (id, display_name) VALUES ('U1', 'One')")
            assert conn.in_transaction
        assert not conn.in_transaction
        assert count_rows(storage, "ResourceOwner") == 1

    def test_rolls_back_and_reraises(self, storage, count_rows):
        conn = storage.connection
        with pytest.raises(RuntimeError):
            with transaction(conn):
                conn.execute("INSERT INTO ResourceOwner (id, display_name) VALUES ('U1', 'One')")
                raise RuntimeError("boom")
        assert not conn.in_transaction
        assert count_rows(storage, "ResourceOwner") == 0

    def test_nested_block_rolls_back_alone(self, storage, count_rows):
        conn = storage.connection
        with transaction(conn):
            conn.execute("INSERT INTO ResourceOwner (id, display_name) VALUES ('U1', 'One')")
            with pytest.raises(RuntimeError):
                with transaction(conn):
                    conn.execute("INSERT INTO ResourceOwner (id, display_name) VALUES ('U2', 'Two')")
                    raise RuntimeError("boom")
            assert conn.in_transaction
        assert [row["id"] for row in conn.execute("SELECT id FROM ResourceOwner")] == ["U1"]

    def test_storage_operations_join_outer_transaction(self, registered):
        conn = registered.connection
        registered.add_approval("C1", "U1", "read")
        with pytest.raises(RuntimeError):
            with transaction(conn):
                assert registered.delete_approval("C1", "U1")
                raise RuntimeError("abort")
        assert registered.get_approval("C1", "U1") is not None


class _FailingRollback:
    """Connection wrapper whose rollback statements fail."""

    def __init__(self, conn):
        self._conn = conn

    @property
    def in_transaction(self):
        return self._conn.in_transaction

    def execute(self, sql, params=()):
        if sql.startswith("ROLLBACK"):
            raise sqlite3.OperationalError("cannot rollback")
        return self._conn.execute(sql, params)


class TestRollbackFailure:

    def test_original_error_survives_failed_rollback(self, storage, caplog):
        conn = storage.connection
        try:
            with caplog.at_level("ERROR", logger="oauth_storage"):
                with pytest.raises(RuntimeError, match="boom"):
                    with transaction(_FailingRollback(conn)):
                        raise RuntimeError("boom")
            assert "Rollback failed" in caplog.text
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")

    def test_original_error_survives_failed_savepoint_rollback(self, storage, caplog):
        conn = storage.connection
        with transaction(conn):
            with caplog.at_level("ERROR", logger="oauth_storage"):
                with pytest.raises(RuntimeError, match="boom"):
                    with transaction(_FailingRollback(conn)):
                        raise RuntimeError("boom")
            assert "Rollback to savepoint failed" in caplog.text
        assert not conn.in_transaction
