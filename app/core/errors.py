"""
Error taxonomy for the sync engine.

Every error carries the HTTP status the API layer answers with, so routes
raise and a single exception handler renders `{"error": message}`.
"""


class OrderFeedError(Exception):
    """Base class for all expected failures."""
    status_code = 500

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(OrderFeedError):
    """A required secret or setting is missing."""
    status_code = 500


class ValidationError(OrderFeedError):
    """Missing or malformed parameter, invalid domain, bad state token."""
    status_code = 400


class Unauthorized(OrderFeedError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(OrderFeedError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(OrderFeedError):
    status_code = 404


class UpstreamError(OrderFeedError):
    """A commerce platform answered with a failure or an error payload."""
    status_code = 500

    def __init__(self, message: str, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(message)


class PersistenceError(OrderFeedError):
    """The datastore rejected a read or write."""
    status_code = 500
