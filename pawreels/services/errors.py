"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Shared cache operation failed."""

    pass


class BudgetExceededError(ServiceError):
    """Daily call budget spent, request blocked before any network I/O."""

    def __init__(self, service_id: str, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(
            f"Daily call budget for '{service_id}' exhausted ({count}/{limit})",
            service_id=service_id,
        )


class AuthFailureError(ServiceError):
    """Credential exchange failed or upstream rejected the bearer token."""

    pass


class TransportError(ServiceError):
    """Network failure or upstream 5xx. Retried by the governor."""

    pass


class RequestTimeoutError(TransportError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class NotFoundError(ServiceError):
    """Upstream answered 404 for a single resource."""

    def __init__(self, service_id: str, resource: str):
        self.resource = resource
        super().__init__(
            f"Resource '{resource}' not found on service '{service_id}'",
            service_id=service_id,
        )


class GeocodeNotFoundError(ServiceError):
    """Geocoder returned no result for a place name."""

    def __init__(self, place: str):
        self.place = place
        super().__init__(f"Could not geocode '{place}'", service_id="geocode")


class SessionExpiredError(ServiceError):
    """Playlist session is unknown or expired; the client should start over."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' expired", service_id="playlist")
