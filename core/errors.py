# core/errors.py


class CatalogSyncError(Exception):
    """Base class for errors that abort a reconciliation pass."""


class TransportError(CatalogSyncError):
    """The upstream feed could not be fetched."""


class MalformedFeedError(CatalogSyncError):
    """The feed body is not an object carrying a 'products' array."""


class StoreError(CatalogSyncError):
    """A single persistence operation failed."""


class StoreUnavailableError(StoreError):
    """The catalog database cannot be opened at all."""
