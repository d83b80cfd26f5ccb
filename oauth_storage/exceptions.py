"""
Exception hierarchy for the OAuth 2.0 storage layer.

Not-found lookups and zero-row writes are not errors; they are reported
through ``None`` results and ``WriteOutcome`` values instead.
"""


class OAuthStorageError(Exception):
    """Base class for every error raised by this package."""
    pass


class StorageError(OAuthStorageError):
    """Statement preparation or execution failed at the database level."""
    pass


class ResourceOwnerError(OAuthStorageError):
    """The identity adapter could not resolve the resource owner."""
    pass


class ConfigurationError(OAuthStorageError):
    """Invalid or incomplete configuration."""
    pass


__all__ = [
    "OAuthStorageError",
    "StorageError",
    "ResourceOwnerError",
    "ConfigurationError",
]
