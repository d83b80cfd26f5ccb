"""
Resource owner identity adapters.

An adapter tells the authorization server who the current user is. The
storage layer only ever sees the resulting id and display name strings.

Current adapters:
- saml: reads the subject from an authenticated SAML session
- dummy: a fixed user from configuration, for development

Select the adapter via ``RESOURCE_OWNER_BACKEND`` (saml|dummy).
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from .config import ResourceOwnerConfig, get_config
from .exceptions import ConfigurationError, ResourceOwnerError
from .models import ResourceOwner
from .storage import OAuthStorage

logger = logging.getLogger(__name__)

PERSISTENT_NAMEID_FORMAT = "urn:oasis:names:tc:SAML:2.0:nameid-format:persistent"

# what the web layer should ask the identity provider for when it starts login
NAMEID_POLICY = {"Format": PERSISTENT_NAMEID_FORMAT, "AllowCreate": True}


class SamlSession(Protocol):
    """The part of a SAML service provider session the adapter reads."""

    def is_authenticated(self) -> bool: ...

    def get_nameid(self) -> Optional[str]: ...

    def get_nameid_format(self) -> Optional[str]: ...

    def get_attributes(self) -> dict[str, list[Any]]: ...


class ResourceOwnerProvider:
    """Interface for resource owner identity adapters."""

    name = "base"

    def set_hint(self, hint: Optional[str] = None) -> None:
        """Pass a hint (e.g. a login_hint) about which user is expected."""
        raise NotImplementedError

    def get_resource_owner_id(self) -> str:
        raise NotImplementedError

    def get_resource_owner_display_name(self) -> str:
        raise NotImplementedError


class SamlResourceOwner(ResourceOwnerProvider):
    """
    Resource owner taken from a SAML 2.0 session.

    The id is the persistent NameID of the subject, or, with
    ``use_nameid`` disabled, the first value of the configured id
    attribute. The display name is the first value of the configured
    display name attribute.
    """

    name = "saml"

    def __init__(self, session: SamlSession, config: ResourceOwnerConfig):
        if not config.use_nameid and not config.id_attribute:
            raise ConfigurationError("SAML_ID_ATTRIBUTE is required when SAML_USE_NAMEID is disabled")
        self._session = session
        self._config = config

    def set_hint(self, hint: Optional[str] = None) -> None:
        # the identity provider decides who logs in
        pass

    def _require_auth(self) -> None:
        if not self._session.is_authenticated():
            raise ResourceOwnerError("resource owner is not authenticated")

    def _first_attribute_value(self, attribute_name: str) -> str:
        values = self._session.get_attributes().get(attribute_name)
        if not values:
            raise ResourceOwnerError(f"{attribute_name} is not available in SAML attributes")
        return str(values[0])

    def get_resource_owner_id(self) -> str:
        self._require_auth()
        if self._config.use_nameid:
            name_id_format = self._session.get_nameid_format()
            if name_id_format != PERSISTENT_NAMEID_FORMAT:
                raise ResourceOwnerError(f"NameID format not equal {PERSISTENT_NAMEID_FORMAT}")
            name_id = self._session.get_nameid()
            if not name_id:
                raise ResourceOwnerError("NameID is not available in SAML assertion")
            return name_id
        return self._first_attribute_value(self._config.id_attribute)

    def get_resource_owner_display_name(self) -> str:
        self._require_auth()
        return self._first_attribute_value(self._config.display_name_attribute)


class DummyResourceOwner(ResourceOwnerProvider):
    """Always the same, configured, resource owner."""

    name = "dummy"

    def __init__(self, config: ResourceOwnerConfig):
        self._config = config

    def set_hint(self, hint: Optional[str] = None) -> None:
        pass

    def get_resource_owner_id(self) -> str:
        return self._config.dummy_id

    def get_resource_owner_display_name(self) -> str:
        return self._config.dummy_display_name


def get_resource_owner_provider(
    config: Optional[ResourceOwnerConfig] = None,
    *,
    saml_session: Optional[SamlSession] = None,
) -> ResourceOwnerProvider:
    """Return the adapter named by ``config.backend``."""
    config = config or get_config().resource_owner
    backend = config.backend.strip().lower()
    if backend == "dummy":
        logger.warning("Using the dummy resource owner, every request is the same user")
        return DummyResourceOwner(config)
    if backend == "saml":
        if saml_session is None:
            raise ConfigurationError("The saml resource owner backend needs a SAML session")
        return SamlResourceOwner(saml_session, config)
    raise ConfigurationError(f"Unknown resource owner backend: {config.backend}")


def remember_resource_owner(provider: ResourceOwnerProvider, storage: OAuthStorage) -> ResourceOwner:
    """
    Resolve the current resource owner and persist it.

    Returns the resolved owner even when the write reported no affected
    row; that is logged, not raised.
    """
    owner = ResourceOwner(
        id=provider.get_resource_owner_id(),
        display_name=provider.get_resource_owner_display_name(),
    )
    outcome = storage.store_resource_owner(owner.id, owner.display_name)
    if not outcome:
        logger.warning(f"Resource owner {owner.id} was not stored ({outcome.value})")
    return owner


__all__ = [
    "DummyResourceOwner",
    "NAMEID_POLICY",
    "PERSISTENT_NAMEID_FORMAT",
    "ResourceOwnerProvider",
    "SamlResourceOwner",
    "SamlSession",
    "get_resource_owner_provider",
    "remember_resource_owner",
]
