"""
Storage layer for an OAuth 2.0 Authorization Server

This package persists registered clients, resource owners, their approvals
and the credentials issued to clients (authorization codes, access tokens,
refresh tokens), and manages the version of its own schema.

Components:
- storage: OAuthStorage, the per-request storage session
- schema: table creation, version record and forward migrations
- connection: DSN handling, persistent connections, transactions
- resource_owner: identity adapters (SAML session, dummy)
- config: environment driven configuration
- logging_config: log handlers and request correlation ids
- cli: administrative command line (``oauth-storage``)
"""

from .config import ConfigManager, LogConfig, ResourceOwnerConfig, StorageConfig, get_config, reset_config
from .connection import close_persistent_connections, open_connection, transaction
from .exceptions import ConfigurationError, OAuthStorageError, ResourceOwnerError, StorageError
from .models import (
    AccessToken,
    Approval,
    AuthorizationCode,
    AuthorizedClient,
    Client,
    ClientData,
    ClientRegistration,
    ClientType,
    RefreshToken,
    ResourceOwner,
    WriteOutcome,
)
from .resource_owner import (
    DummyResourceOwner,
    ResourceOwnerProvider,
    SamlResourceOwner,
    get_resource_owner_provider,
    remember_resource_owner,
)
from .schema import BASELINE_VERSION, SchemaManager
from .storage import OAuthStorage

__version__ = "0.3.0"

__all__ = [
    # Storage
    "OAuthStorage",
    "SchemaManager",
    "BASELINE_VERSION",
    "open_connection",
    "close_persistent_connections",
    "transaction",

    # Records
    "AccessToken",
    "Approval",
    "AuthorizationCode",
    "AuthorizedClient",
    "Client",
    "ClientData",
    "ClientRegistration",
    "ClientType",
    "RefreshToken",
    "ResourceOwner",
    "WriteOutcome",

    # Identity adapters
    "ResourceOwnerProvider",
    "SamlResourceOwner",
    "DummyResourceOwner",
    "get_resource_owner_provider",
    "remember_resource_owner",

    # Configuration
    "ConfigManager",
    "StorageConfig",
    "ResourceOwnerConfig",
    "LogConfig",
    "get_config",
    "reset_config",

    # Errors
    "OAuthStorageError",
    "StorageError",
    "ResourceOwnerError",
    "ConfigurationError",
]
