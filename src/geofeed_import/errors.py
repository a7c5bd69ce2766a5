"""geofeed_import.errors

Request-level exception taxonomy.

Row-level problems (bad CIDR, bad country code, wrong field count, duplicates)
are never raised; they are collected as RowError values and returned alongside
any partial import.  Everything here short-circuits a request before any
storage mutation, except StorageFailureError which wraps an unexpected
persistence error.
"""

from __future__ import annotations


class GeofeedImportError(Exception):
    """Base class for request-level failures."""


class InvalidRequestError(GeofeedImportError):
    """Raised when the request itself is malformed (blank name, bad payload)."""


class NoRowsProvidedError(InvalidRequestError):
    """Raised when an import request carries no rows at all."""


class NoValidRowsError(InvalidRequestError):
    """Raised when no submitted row passes validation."""


class GeofeedNotFoundError(GeofeedImportError):
    """Raised when the geofeed does not exist for the calling user."""


class UnauthorizedError(GeofeedImportError):
    """Raised when the request carries no usable caller identity."""


class StorageFailureError(GeofeedImportError):
    """Raised when the storage layer fails unexpectedly."""


class SourceFetchError(GeofeedImportError):
    """Raised when a CSV source (URL or file) cannot be read."""


class SettingsValidationError(ValueError):
    """Raised when the YAML settings file fails validation."""
