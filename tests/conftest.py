"""
Shared fixtures for the storage tests.

Every test gets its own SQLite file under ``tmp_path``; nothing touches the
environment's configured database.
"""

import logging
import os

import pytest

from oauth_storage import OAuthStorage, StorageConfig, close_persistent_connections

CONFIG_VARS = (
    "OAUTH_STORAGE_DSN",
    "OAUTH_STORAGE_USERNAME",
    "OAUTH_STORAGE_PASSWORD",
    "OAUTH_STORAGE_PERSISTENT",
    "OAUTH_ALLOW_UNREGISTERED_CLIENTS",
    "RESOURCE_OWNER_BACKEND",
    "SAML_USE_NAMEID",
    "SAML_ID_ATTRIBUTE",
    "SAML_DISPLAY_NAME_ATTRIBUTE",
    "DUMMY_RESOURCE_OWNER_ID",
    "DUMMY_RESOURCE_OWNER_DISPLAY_NAME",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FILE",
)


class FrozenClock:
    """Clock returning a fixed, settable time."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "oauth.sqlite"


@pytest.fixture
def storage_config(db_path):
    return StorageConfig(dsn=f"sqlite:{db_path}")


@pytest.fixture
def storage(storage_config, clock):
    """Initialized storage with foreign keys enforced."""
    with OAuthStorage(storage_config, clock=clock) as s:
        s.init_database()
        yield s


@pytest.fixture
def loose_storage(db_path, clock):
    """Initialized storage that allows unregistered clients (no foreign keys)."""
    config = StorageConfig(dsn=f"sqlite:{db_path}", allow_unregistered_clients=True)
    with OAuthStorage(config, clock=clock) as s:
        s.init_database()
        yield s


@pytest.fixture
def client_data():
    return {
        "id": "C1",
        "name": "Demo App",
        "description": "Application used in the tests",
        "secret": "s3cr3t",
        "redirect_uri": "https://app/cb",
        "type": "confidential",
    }


@pytest.fixture
def registered(storage, client_data):
    """Storage with client C1 and resource owner U1 present."""
    assert storage.add_client(client_data)
    assert storage.store_resource_owner("U1", "User One")
    return storage


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every setting this package reads, restoring it afterwards."""
    for name in CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
    # values loaded from .env files are not tracked by monkeypatch
    for name in CONFIG_VARS:
        os.environ.pop(name, None)


@pytest.fixture(autouse=True)
def _reset_process_state():
    yield
    close_persistent_connections()
    package_logger = logging.getLogger("oauth_storage")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def count_rows():
    """Return a helper counting the rows of a table that match a condition."""

    def _count(storage, table, where="1 = 1", params=()):
        sql = f"SELECT COUNT(*) FROM {table} WHERE {where}"
        return storage.connection.execute(sql, params).fetchone()[0]

    return _count
