"""
Service layer infrastructure - resilience patterns for outbound API calls.

Provides:
- Cache: LRU/TTL cache with stale-while-revalidate
- CircuitBreaker: Isolates a failing API
- RequestDeduplicator: Prevents duplicate concurrent requests
- ApiClient: Unified client combining all patterns
"""

from paceline.services.errors import (
    ApiError,
    CircuitOpenError,
    ErrorCode,
    HttpStatusError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    ServiceError,
)
from paceline.services.cache import (
    DEFAULT_TTL,
    Cache,
    CacheConfig,
    CacheEntry,
    Caches,
    CacheStats,
    build_caches,
    get_caches,
)
from paceline.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from paceline.services.csrf import CsrfProtection
from paceline.services.deduplicator import RequestDeduplicator
from paceline.services.interceptors import InterceptorPipeline, OutgoingRequest
from paceline.services.memo import memoize, memoize_async
from paceline.services.client import (
    ApiClient,
    ApiResponse,
    RequestConfig,
    close_api_client,
    create_api_client,
    get_api_client,
)

__all__ = [
    # Errors
    "ServiceError",
    "ApiError",
    "ErrorCode",
    "HttpStatusError",
    "NetworkError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "RequestCancelledError",
    # Cache
    "DEFAULT_TTL",
    "Cache",
    "CacheConfig",
    "CacheEntry",
    "Caches",
    "CacheStats",
    "build_caches",
    "get_caches",
    "memoize",
    "memoize_async",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Requests
    "CsrfProtection",
    "RequestDeduplicator",
    "InterceptorPipeline",
    "OutgoingRequest",
    # Client
    "ApiClient",
    "ApiResponse",
    "RequestConfig",
    "create_api_client",
    "get_api_client",
    "close_api_client",
]
