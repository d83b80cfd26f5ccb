"""
Record types for the OAuth 2.0 storage layer.

Rows come back from the database as the dataclasses defined here; client
registrations going in are validated with pydantic first.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClientType(str, Enum):
    """Client classifications known to the authorization server."""
    CONFIDENTIAL = "confidential"
    PUBLIC = "public"
    WEB_APPLICATION = "web_application"
    USER_AGENT_BASED_APPLICATION = "user_agent_based_application"
    NATIVE_APPLICATION = "native_application"


class WriteOutcome(str, Enum):
    """
    Result of a single-row write.

    Truthy when exactly the intended row was written (or, for an unchanged
    resource owner, when no write was needed); falsy when the statement
    matched no row or more than one.
    """
    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    MULTIPLE = "multiple"

    def __bool__(self) -> bool:
        return self not in (WriteOutcome.NOT_FOUND, WriteOutcome.MULTIPLE)

    @classmethod
    def from_rowcount(cls, rowcount: int, success: WriteOutcome) -> WriteOutcome:
        if rowcount == 1:
            return success
        if rowcount == 0:
            return cls.NOT_FOUND
        return cls.MULTIPLE


class ClientData(BaseModel):
    """
    Mutable fields of a client registration.

    Every field must be present, ``secret`` may be ``None``. Values are
    stored exactly as given.
    """

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1)
    description: str = Field(...)
    secret: Optional[str] = Field(...)
    redirect_uri: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)

    @field_validator("name", "redirect_uri", "type")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def coerce_client_type(cls, v: Any) -> Any:
        if isinstance(v, ClientType):
            return v.value
        return v


class ClientRegistration(ClientData):
    """A complete client registration, including its identifier."""

    id: str = Field(..., min_length=1, max_length=64)

    @field_validator("id")
    @classmethod
    def id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


@dataclass
class Client:
    """A registered OAuth 2.0 client."""
    id: str
    name: str
    description: str
    secret: str | None
    redirect_uri: str
    type: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Client:
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            secret=row["secret"],
            redirect_uri=row["redirect_uri"],
            type=row["type"],
        )

    @property
    def is_public(self) -> bool:
        return self.type == ClientType.PUBLIC.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ResourceOwner:
    """An authenticated end user."""
    id: str
    display_name: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ResourceOwner:
        return cls(id=row["id"], display_name=row["display_name"])


@dataclass
class Approval:
    """Scope a resource owner granted to a client."""
    client_id: str
    resource_owner_id: str
    scope: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Approval:
        return cls(
            client_id=row["client_id"],
            resource_owner_id=row["resource_owner_id"],
            scope=row["scope"],
        )


@dataclass
class AuthorizedClient:
    """One entry of a resource owner's "applications I authorized" listing."""
    id: str
    name: str
    description: str
    redirect_uri: str
    scope: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AuthorizedClient:
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            redirect_uri=row["redirect_uri"],
            scope=row["scope"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AuthorizationCode:
    """Short-lived code exchanged for tokens at the token endpoint."""
    authorization_code: str
    client_id: str
    resource_owner_id: str
    redirect_uri: str | None
    issue_time: int
    scope: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AuthorizationCode:
        return cls(
            authorization_code=row["authorization_code"],
            client_id=row["client_id"],
            resource_owner_id=row["resource_owner_id"],
            redirect_uri=row["redirect_uri"],
            issue_time=row["issue_time"],
            scope=row["scope"],
        )


@dataclass
class AccessToken:
    """
    Bearer access token.

    ``expires_in`` is a lifetime in seconds counted from ``issue_time``; the
    store never checks it, consumers do.
    """
    access_token: str
    client_id: str
    resource_owner_id: str
    issue_time: int
    expires_in: int
    scope: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AccessToken:
        return cls(
            access_token=row["access_token"],
            client_id=row["client_id"],
            resource_owner_id=row["resource_owner_id"],
            issue_time=row["issue_time"],
            expires_in=row["expires_in"],
            scope=row["scope"],
        )

    @property
    def expires_at(self) -> int:
        return self.issue_time + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        if now is None:
            now = time.time()
        return now >= self.expires_at


@dataclass
class RefreshToken:
    """Long-lived token used to obtain new access tokens."""
    refresh_token: str
    client_id: str
    resource_owner_id: str
    scope: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> RefreshToken:
        return cls(
            refresh_token=row["refresh_token"],
            client_id=row["client_id"],
            resource_owner_id=row["resource_owner_id"],
            scope=row["scope"],
        )


__all__ = [
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
]
