"""
SQLite storage for the OAuth 2.0 Authorization Server

Persists everything the authorization server needs between requests:

- Client registry (registration, update, cascading removal)
- Resource owners (idempotent upsert of authenticated users)
- Approvals (the scope a resource owner granted a client)
- Authorization codes, access tokens and refresh tokens, keyed by value

Each request gets its own ``OAuthStorage`` bound to one connection. Writes
report a ``WriteOutcome`` instead of raising when no row matched; driver
failures raise ``StorageError``. Multi-statement removals run inside a
single transaction so a failure never leaves half-deleted data behind.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Callable, Mapping, Optional, Union

from .config import StorageConfig, get_config
from .connection import execute, is_persistent, open_connection, transaction
from .models import (
    AccessToken,
    Approval,
    AuthorizationCode,
    AuthorizedClient,
    Client,
    ClientData,
    ClientRegistration,
    RefreshToken,
    ResourceOwner,
    WriteOutcome,
)
from .schema import SchemaManager

logger = logging.getLogger(__name__)

ClientInput = Union[ClientData, Mapping[str, Any]]


class OAuthStorage:
    """
    Storage session for one request.

    Usable as a context manager; the connection is released on exit unless
    it is a shared persistent connection.
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        *,
        connection: Optional[sqlite3.Connection] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            config: Storage settings (global configuration when omitted)
            connection: Use this connection instead of opening one; the
                caller keeps ownership of it
            clock: Source of issue times for codes and tokens
        """
        self.config = config or get_config().storage
        if connection is None:
            self._conn = open_connection(self.config)
            self._owns_connection = not is_persistent(self._conn)
        else:
            self._conn = connection
            self._owns_connection = False
        self._clock = clock
        self.schema = SchemaManager(self._conn)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        if self._owns_connection:
            self._conn.close()
            self._owns_connection = False

    def __enter__(self) -> OAuthStorage:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _now(self) -> int:
        return int(self._clock())

    # Schema Methods
    def init_database(self) -> None:
        self.schema.init_database()

    def get_database_version(self) -> int:
        return self.schema.get_database_version()

    def set_database_version(self, version: int) -> WriteOutcome:
        return self.schema.set_database_version(version)

    def update_database(self) -> int:
        return self.schema.update_database()

    # Client Management Methods
    def get_clients(self) -> list[Client]:
        rows = execute(self._conn, "SELECT * FROM Client", error="unable to retrieve clients").fetchall()
        return [Client.from_row(row) for row in rows]

    def get_client(self, client_id: str) -> Client | None:
        row = execute(
            self._conn,
            "SELECT * FROM Client WHERE id = :client_id",
            {"client_id": client_id},
            error="unable to retrieve client",
        ).fetchone()
        return Client.from_row(row) if row else None

    def add_client(self, data: ClientInput) -> WriteOutcome:
        """Register a client; ``data`` must carry all six fields."""
        client = data if isinstance(data, ClientRegistration) else ClientRegistration.model_validate(
            data.model_dump() if isinstance(data, ClientData) else data
        )
        cursor = execute(
            self._conn,
            """
            INSERT INTO Client (id, name, description, secret, redirect_uri, type)
            VALUES (:id, :name, :description, :secret, :redirect_uri, :type)
            """,
            client.model_dump(),
            error="unable to add client",
        )
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)
        logger.info(f"Client added: {client.id} ({outcome.value})")
        return outcome

    def update_client(self, client_id: str, data: ClientInput) -> WriteOutcome:
        """
        Overwrite the mutable fields of ``client_id``.

        Returns ``WriteOutcome.NOT_FOUND`` when no such client exists.
        """
        client = data if isinstance(data, ClientData) else ClientData.model_validate(data)
        params = client.model_dump(include={"name", "description", "secret", "redirect_uri", "type"})
        params["client_id"] = client_id
        cursor = execute(
            self._conn,
            """
            UPDATE Client
            SET name = :name, description = :description, secret = :secret,
                redirect_uri = :redirect_uri, type = :type
            WHERE id = :client_id
            """,
            params,
            error="unable to update client",
        )
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.UPDATED)
        logger.info(f"Client updated: {client_id} ({outcome.value})")
        return outcome

    def delete_client(self, client_id: str) -> WriteOutcome:
        """
        Remove a client together with everything issued to it.

        Approvals, access tokens, authorization codes and refresh tokens go
        first (the order foreign keys require), then the client row. All of
        it happens in one transaction.
        """
        params = {"client_id": client_id}
        with transaction(self._conn):
            execute(self._conn, "DELETE FROM Approval WHERE client_id = :client_id", params,
                    error="unable to delete approvals")
            execute(self._conn, "DELETE FROM AccessToken WHERE client_id = :client_id", params,
                    error="unable to delete access tokens")
            execute(self._conn, "DELETE FROM AuthorizationCode WHERE client_id = :client_id", params,
                    error="unable to delete authorization codes")
            execute(self._conn, "DELETE FROM RefreshToken WHERE client_id = :client_id", params,
                    error="unable to delete refresh tokens")
            cursor = execute(self._conn, "DELETE FROM Client WHERE id = :client_id", params,
                             error="unable to delete client")
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.DELETED)
        logger.info(f"Client deleted: {client_id} ({outcome.value})")
        return outcome

    # Resource Owner Methods
    def get_resource_owner(self, resource_owner_id: str) -> ResourceOwner | None:
        row = execute(
            self._conn,
            "SELECT * FROM ResourceOwner WHERE id = :resource_owner_id",
            {"resource_owner_id": resource_owner_id},
            error="unable to retrieve resource owner",
        ).fetchone()
        return ResourceOwner.from_row(row) if row else None

    def store_resource_owner(self, resource_owner_id: str, display_name: str) -> WriteOutcome:
        """
        Insert the resource owner, or update its display name if it changed.

        An existing owner with the same display name is left untouched and
        reported as ``WriteOutcome.UNCHANGED``.
        """
        params = {"id": resource_owner_id, "display_name": display_name}
        existing = self.get_resource_owner(resource_owner_id)
        if existing is None:
            cursor = execute(
                self._conn,
                "INSERT INTO ResourceOwner (id, display_name) VALUES (:id, :display_name)",
                params,
                error="unable to store resource owner",
            )
            outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)
        elif existing.display_name != display_name:
            cursor = execute(
                self._conn,
                "UPDATE ResourceOwner SET display_name = :display_name WHERE id = :id",
                params,
                error="unable to update resource owner",
            )
            outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.UPDATED)
        else:
            outcome = WriteOutcome.UNCHANGED
        logger.debug(f"Resource owner stored: {resource_owner_id} ({outcome.value})")
        return outcome

    # Approval Methods
    def add_approval(self, client_id: str, resource_owner_id: str, scope: str) -> WriteOutcome:
        """
        Record a new approval.

        This never merges with an existing approval for the pair; callers
        check ``get_approval`` first and use ``update_approval`` instead.
        """
        cursor = execute(
            self._conn,
            """
            INSERT INTO Approval (client_id, resource_owner_id, scope)
            VALUES (:client_id, :resource_owner_id, :scope)
            """,
            {"client_id": client_id, "resource_owner_id": resource_owner_id, "scope": scope},
            error="unable to store approved scope",
        )
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)
        logger.info(f"Approval added: client={client_id} owner={resource_owner_id} ({outcome.value})")
        return outcome

    def update_approval(self, client_id: str, resource_owner_id: str, scope: str) -> WriteOutcome:
        cursor = execute(
            self._conn,
            """
            UPDATE Approval SET scope = :scope
            WHERE client_id = :client_id AND resource_owner_id = :resource_owner_id
            """,
            {"client_id": client_id, "resource_owner_id": resource_owner_id, "scope": scope},
            error="unable to update approved scope",
        )
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.UPDATED)
        logger.info(f"Approval updated: client={client_id} owner={resource_owner_id} ({outcome.value})")
        return outcome

    def get_approval(self, client_id: str, resource_owner_id: str) -> Approval | None:
        row = execute(
            self._conn,
            """
            SELECT * FROM Approval
            WHERE client_id = :client_id AND resource_owner_id = :resource_owner_id
            """,
            {"client_id": client_id, "resource_owner_id": resource_owner_id},
            error="unable to get approved scope",
        ).fetchone()
        return Approval.from_row(row) if row else None

    def get_approvals(self, resource_owner_id: str) -> list[AuthorizedClient]:
        """Clients the resource owner approved, with the granted scope."""
        rows = execute(
            self._conn,
            """
            SELECT c.id, a.scope, c.name, c.description, c.redirect_uri
            FROM Approval a
            JOIN Client c ON a.client_id = c.id
            WHERE a.resource_owner_id = :resource_owner_id
            """,
            {"resource_owner_id": resource_owner_id},
            error="unable to get approvals",
        ).fetchall()
        return [AuthorizedClient.from_row(row) for row in rows]

    def delete_approval(self, client_id: str, resource_owner_id: str) -> WriteOutcome:
        """
        Revoke an approval.

        Refresh tokens issued for the same pair are removed with it, in the
        same transaction.
        """
        params = {"client_id": client_id, "resource_owner_id": resource_owner_id}
        with transaction(self._conn):
            execute(
                self._conn,
                "DELETE FROM RefreshToken WHERE client_id = :client_id AND resource_owner_id = :resource_owner_id",
                params,
                error="unable to delete refresh tokens",
            )
            cursor = execute(
                self._conn,
                "DELETE FROM Approval WHERE client_id = :client_id AND resource_owner_id = :resource_owner_id",
                params,
                error="unable to delete approval",
            )
        outcome = WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.DELETED)
        logger.info(f"Approval deleted: client={client_id} owner={resource_owner_id} ({outcome.value})")
        return outcome

    # Authorization Code Methods
    def store_authorization_code(
        self,
        authorization_code: str,
        resource_owner_id: str,
        client_id: str,
        redirect_uri: str | None,
        scope: str,
    ) -> WriteOutcome:
        cursor = execute(
            self._conn,
            """
            INSERT INTO AuthorizationCode
                (client_id, resource_owner_id, authorization_code, redirect_uri, issue_time, scope)
            VALUES
                (:client_id, :resource_owner_id, :authorization_code, :redirect_uri, :issue_time, :scope)
            """,
            {
                "client_id": client_id,
                "resource_owner_id": resource_owner_id,
                "authorization_code": authorization_code,
                "redirect_uri": redirect_uri,
                "issue_time": self._now(),
                "scope": scope,
            },
            error="unable to store authorization code",
        )
        logger.debug(f"Authorization code stored for client {client_id}")
        return WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)

    def get_authorization_code(self, authorization_code: str, redirect_uri: str | None) -> AuthorizationCode | None:
        """
        Look up a code issued for exactly this redirect URI.

        A code issued without a redirect URI only matches ``None``.
        """
        row = execute(
            self._conn,
            """
            SELECT * FROM AuthorizationCode
            WHERE authorization_code IS :authorization_code AND redirect_uri IS :redirect_uri
            """,
            {"authorization_code": authorization_code, "redirect_uri": redirect_uri},
            error="unable to get authorization code",
        ).fetchone()
        return AuthorizationCode.from_row(row) if row else None

    def delete_authorization_code(self, authorization_code: str, redirect_uri: str | None) -> WriteOutcome:
        cursor = execute(
            self._conn,
            """
            DELETE FROM AuthorizationCode
            WHERE authorization_code IS :authorization_code AND redirect_uri IS :redirect_uri
            """,
            {"authorization_code": authorization_code, "redirect_uri": redirect_uri},
            error="unable to delete authorization code",
        )
        return WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.DELETED)

    # Access Token Methods
    def store_access_token(
        self,
        access_token: str,
        client_id: str,
        resource_owner_id: str,
        scope: str,
        expires_in: int,
    ) -> WriteOutcome:
        cursor = execute(
            self._conn,
            """
            INSERT INTO AccessToken
                (client_id, resource_owner_id, issue_time, expires_in, scope, access_token)
            VALUES
                (:client_id, :resource_owner_id, :issue_time, :expires_in, :scope, :access_token)
            """,
            {
                "client_id": client_id,
                "resource_owner_id": resource_owner_id,
                "issue_time": self._now(),
                "expires_in": int(expires_in),
                "scope": scope,
                "access_token": access_token,
            },
            error="unable to store access token",
        )
        logger.debug(f"Access token stored for client {client_id}")
        return WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)

    def get_access_token(self, access_token: str) -> AccessToken | None:
        row = execute(
            self._conn,
            "SELECT * FROM AccessToken WHERE access_token = :access_token",
            {"access_token": access_token},
            error="unable to get access token",
        ).fetchone()
        return AccessToken.from_row(row) if row else None

    # Refresh Token Methods
    def store_refresh_token(
        self,
        refresh_token: str,
        client_id: str,
        resource_owner_id: str,
        scope: str,
    ) -> WriteOutcome:
        cursor = execute(
            self._conn,
            """
            INSERT INTO RefreshToken (client_id, resource_owner_id, scope, refresh_token)
            VALUES (:client_id, :resource_owner_id, :scope, :refresh_token)
            """,
            {
                "client_id": client_id,
                "resource_owner_id": resource_owner_id,
                "scope": scope,
                "refresh_token": refresh_token,
            },
            error="unable to store refresh token",
        )
        logger.debug(f"Refresh token stored for client {client_id}")
        return WriteOutcome.from_rowcount(cursor.rowcount, WriteOutcome.INSERTED)

    def get_refresh_token(self, refresh_token: str) -> RefreshToken | None:
        row = execute(
            self._conn,
            "SELECT * FROM RefreshToken WHERE refresh_token = :refresh_token",
            {"refresh_token": refresh_token},
            error="unable to get refresh token",
        ).fetchone()
        return RefreshToken.from_row(row) if row else None


__all__ = ["OAuthStorage"]
