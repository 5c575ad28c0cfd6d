"""
Service layer - everything that talks to the outside world.

Provides:
- SharedCache: atomic key-value store (Redis or in-process)
- CallGovernor: daily call budget with a count-based breaker and retries
- TokenManager: lock-guarded credential refresh shared by all workers
- PetfinderClient: listings API client
- GeocodeResolver: cache-first geocoding
"""

from pawreels.services.errors import (
    ServiceError,
    CacheError,
    BudgetExceededError,
    AuthFailureError,
    TransportError,
    RequestTimeoutError,
    NotFoundError,
    GeocodeNotFoundError,
    SessionExpiredError,
)
from pawreels.services.cache import SharedCache, MemoryCache, RedisCache, create_cache
from pawreels.services.governor import CallGovernor, CircuitState, RetryPolicy
from pawreels.services.tokens import TokenManager
from pawreels.services.client import PetfinderClient, SearchPage
from pawreels.services.geocode import Coordinates, GeocodeResolver, OpenCageClient

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "BudgetExceededError",
    "AuthFailureError",
    "TransportError",
    "RequestTimeoutError",
    "NotFoundError",
    "GeocodeNotFoundError",
    "SessionExpiredError",
    # Cache
    "SharedCache",
    "MemoryCache",
    "RedisCache",
    "create_cache",
    # Governor
    "CallGovernor",
    "CircuitState",
    "RetryPolicy",
    # Tokens
    "TokenManager",
    # Clients
    "PetfinderClient",
    "SearchPage",
    "Coordinates",
    "GeocodeResolver",
    "OpenCageClient",
]
