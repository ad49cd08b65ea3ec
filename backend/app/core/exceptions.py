"""Error taxonomy for property discovery."""


class DiscoveryError(Exception):
    """Base exception for all discovery errors."""


class ValidationError(DiscoveryError):
    """Raised when a filter combination cannot be safely auto-corrected."""


class SearchUnavailable(DiscoveryError):
    """Raised when the property store is unreachable, failing or timed out."""


class NotFound(DiscoveryError):
    """Raised when an operation addresses a property that does not exist."""


class Conflict(DiscoveryError):
    """Raised when a favorite already exists for the (user, property) pair."""


class StoreError(Exception):
    """Raised by a property store when a query cannot be completed."""


class DuplicateFavorite(StoreError):
    """Raised by a property store when a favorite link already exists."""
