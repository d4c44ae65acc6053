"""
ApiClient - Async HTTP client with resilience patterns.

Combines:
- Cache for GET response caching
- CircuitBreaker for failure isolation
- RequestDeduplicator for concurrent identical GET requests
- Retry with exponential backoff and jitter
- Request / response / error interceptors
- CSRF header injection
"""

import asyncio
import copy
import time
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Generic, TypeVar

import httpx
from loguru import logger

from paceline.services.cache import (
    DEFAULT_TTL,
    Cache,
    CacheConfig,
    CacheStats,
    get_caches,
)
from paceline.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from paceline.services.csrf import CsrfProtection
from paceline.services.deduplicator import RequestDeduplicator
from paceline.services.errors import (
    ApiError,
    CircuitOpenError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    classify_status,
)
from paceline.services.interceptors import (
    Interceptor,
    InterceptorPipeline,
    OutgoingRequest,
)
from paceline.settings import Settings, get_settings
from paceline.utils import calculate_backoff, request_fingerprint

T = TypeVar("T")


@dataclass
class ApiResponse(Generic[T]):
    """Result from an API request."""

    data: T
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    cached: bool = False
    duration: float = 0.0  # seconds, measured until the response arrived


@dataclass(frozen=True)
class RequestConfig:
    """Per-call request options."""

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: float = 30.0  # per attempt
    retries: int = 3
    retry_delay: float = 1.0  # backoff base
    use_cache: bool | None = None
    cache_ttl: timedelta | None = DEFAULT_TTL
    cancel_event: asyncio.Event | None = None

    @property
    def should_cache(self) -> bool:
        """Only GET responses are cached; use_cache=False opts out."""
        return self.method == "GET" and self.use_cache is not False


class ApiClient:
    """
    HTTP client with caching, deduplication, circuit breaking and retries.

    Usage:
        async with ApiClient(base_url="https://gpx.example.com") as client:
            result = await client.get("/api/elevation/summary")

            result = await client.post("/api/poster", body={"route": route_id})

            client.add_request_interceptor(add_auth_header)
    """

    def __init__(
        self,
        base_url: str = "",
        default_headers: dict[str, str] | None = None,
        cache: Cache[Any] | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        csrf: CsrfProtection | None = None,
        http_client: httpx.AsyncClient | None = None,
        default_timeout: float = 30.0,
        default_retries: int = 3,
        default_retry_delay: float = 1.0,
        debug: bool = False,
    ):
        self.base_url = base_url
        self._default_headers = {
            "Content-Type": "application/json",
            **(default_headers or {}),
        }
        self._default_timeout = default_timeout
        self._default_retries = default_retries
        self._default_retry_delay = default_retry_delay

        # Initialize components
        self._cache: Cache[Any] = cache if cache is not None else Cache(
            CacheConfig(
                max_size=100,
                max_memory_mb=10,
                default_ttl=timedelta(minutes=1),
            ),
            name="api_cache",
            debug=debug,
        )
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._csrf = csrf or CsrfProtection()
        self._deduplicator = RequestDeduplicator(debug=debug)

        self._request_interceptors: InterceptorPipeline[OutgoingRequest] = (
            InterceptorPipeline("request")
        )
        self._response_interceptors: InterceptorPipeline[ApiResponse[Any]] = (
            InterceptorPipeline("response")
        )
        self._error_interceptors: InterceptorPipeline[ApiError] = (
            InterceptorPipeline("error")
        )

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_http_client = http_client is None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
            self._owns_http_client = True
        return self._http_client

    @property
    def cache(self) -> Cache[Any]:
        return self._cache

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    # Interceptors

    def add_request_interceptor(
        self, interceptor: Interceptor[OutgoingRequest]
    ) -> Any:
        """Register a request interceptor. Returns a remover."""
        return self._request_interceptors.add(interceptor)

    def add_response_interceptor(
        self, interceptor: Interceptor[ApiResponse[Any]]
    ) -> Any:
        """Register a response interceptor. Returns a remover."""
        return self._response_interceptors.add(interceptor)

    def add_error_interceptor(self, interceptor: Interceptor[ApiError]) -> Any:
        """
        Register an error interceptor. Returns a remover.

        Error interceptors run on every ApiError raised by request(), once
        per caller, and may return a different error to raise instead.
        """
        return self._error_interceptors.add(interceptor)

    # Core request method

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        use_cache: bool | None = None,
        cache_ttl: timedelta | None = DEFAULT_TTL,
        cancel_event: asyncio.Event | None = None,
    ) -> ApiResponse[Any]:
        """
        Make an HTTP request with resilience patterns.

        Args:
            url: Absolute URL, or path appended to base_url
            method: HTTP method (GET, POST, etc.)
            headers: Additional headers
            body: JSON-serializable request body
            timeout: Seconds allowed per attempt
            retries: Retries after the first attempt
            retry_delay: Base delay for exponential backoff, in seconds
            use_cache: Set False to bypass the cache (only GET is cached)
            cache_ttl: Override cache TTL; None never expires
            cancel_event: Setting this event aborts the request

        Returns:
            ApiResponse with parsed body

        Raises:
            CircuitOpenError: If circuit breaker is open
            RequestTimeoutError: If an attempt times out
            RequestCancelledError: If cancel_event was set
            NetworkError: If no response was received after all retries
            HttpStatusError: For classified non-2xx responses
        """
        config = RequestConfig(
            method=method.upper(),
            headers=dict(headers or {}),
            body=body,
            timeout=timeout if timeout is not None else self._default_timeout,
            retries=retries if retries is not None else self._default_retries,
            retry_delay=(
                retry_delay if retry_delay is not None else self._default_retry_delay
            ),
            use_cache=use_cache,
            cache_ttl=cache_ttl,
            cancel_event=cancel_event,
        )

        try:
            return await self._request(url, config)
        except ApiError as e:
            error = await self._error_interceptors.run(e)
            if error is e:
                raise
            raise error from e

    async def _request(self, url: str, config: RequestConfig) -> ApiResponse[Any]:
        if self._circuit_breaker.is_open():
            raise CircuitOpenError(self._circuit_breaker.get_time_until_reset())

        full_url = self._resolve_url(url)
        cache_key = request_fingerprint(config.method, full_url, config.body)

        # Check cache first (for GET requests)
        if config.should_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return replace(cached, data=copy.deepcopy(cached.data), cached=True)

        if config.method == "GET":
            return await self._deduplicator.dedupe(
                cache_key,
                lambda: self._execute(full_url, cache_key, config),
            )
        return await self._execute(full_url, cache_key, config)

    def _resolve_url(self, url: str) -> str:
        if url.startswith("http"):
            return url
        return f"{self.base_url}{url}"

    async def _execute(
        self,
        full_url: str,
        cache_key: str,
        config: RequestConfig,
    ) -> ApiResponse[Any]:
        """Run interceptors, then the retry loop."""
        outgoing = await self._request_interceptors.run(
            OutgoingRequest(
                url=full_url,
                method=config.method,
                headers=dict(config.headers),
                body=config.body,
            )
        )
        headers = {
            **self._default_headers,
            **self._csrf.get_headers(),
            **outgoing.headers,
        }
        client = self._get_http_client()
        start = time.perf_counter()

        for attempt in range(config.retries + 1):
            is_last = attempt == config.retries
            if config.cancel_event is not None and config.cancel_event.is_set():
                raise RequestCancelledError()

            try:
                response = await self._send(client, outgoing, headers, config)

            except RequestTimeoutError:
                self._circuit_breaker.record_failure()
                raise

            except httpx.TimeoutException as e:
                self._circuit_breaker.record_failure()
                raise RequestTimeoutError(config.timeout) from e

            except httpx.RequestError as e:
                if is_last:
                    self._circuit_breaker.record_failure()
                    raise NetworkError(f"Network connection failed: {e}") from e

                backoff = calculate_backoff(attempt, config.retry_delay)
                logger.warning(
                    f"Network error for {outgoing.method} {outgoing.url}, "
                    f"retrying in {backoff:.2f}s (attempt {attempt + 1}): {e}"
                )
                await self._wait_before_retry(backoff, config.cancel_event)
                continue

            duration = time.perf_counter() - start

            if not response.is_success:
                error = classify_status(
                    response.status_code, self._parse_error_body(response)
                )
                if not error.retryable or is_last:
                    self._circuit_breaker.record_failure()
                    raise error

                backoff = calculate_backoff(attempt, config.retry_delay)
                logger.warning(
                    f"Request to {outgoing.url} failed with {response.status_code}, "
                    f"retrying in {backoff:.2f}s (attempt {attempt + 1})"
                )
                await self._wait_before_retry(backoff, config.cancel_event)
                continue

            data = self._parse_body(response)
            self._circuit_breaker.record_success()

            api_response: ApiResponse[Any] = ApiResponse(
                data=data,
                status=response.status_code,
                headers=dict(response.headers),
                cached=False,
                duration=duration,
            )
            api_response = await self._response_interceptors.run(api_response)

            # Cache successful GET responses; the entry keeps its own copy
            if config.should_cache:
                self._cache.set(
                    cache_key,
                    replace(api_response, data=copy.deepcopy(api_response.data)),
                    config.cache_ttl,
                )

            logger.debug(
                f"API request completed: {outgoing.method} {outgoing.url} "
                f"-> {response.status_code} in {duration * 1000:.0f}ms"
            )
            return api_response

        raise NetworkError()

    async def _send(
        self,
        client: httpx.AsyncClient,
        outgoing: OutgoingRequest,
        headers: dict[str, str],
        config: RequestConfig,
    ) -> httpx.Response:
        """
        Issue one attempt, bounded by the timeout and the cancel event.

        Raises httpx errors from the transport unchanged.
        """
        send = asyncio.ensure_future(
            client.request(
                method=outgoing.method,
                url=outgoing.url,
                headers=headers,
                json=outgoing.body,
                timeout=config.timeout,
            )
        )
        waiters: set[asyncio.Future[Any]] = {send}
        cancelled: asyncio.Future[Any] | None = None
        if config.cancel_event is not None:
            cancelled = asyncio.ensure_future(config.cancel_event.wait())
            waiters.add(cancelled)

        try:
            await asyncio.wait(
                waiters,
                timeout=config.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if cancelled is not None and cancelled.done() and not cancelled.cancelled():
            raise RequestCancelledError()
        if send.done() and not send.cancelled():
            return send.result()
        raise RequestTimeoutError(config.timeout)

    @staticmethod
    async def _wait_before_retry(
        delay: float, cancel_event: asyncio.Event | None
    ) -> None:
        """Sleep for the backoff delay, or raise as soon as the caller cancels."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RequestCancelledError()

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response.text
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Invalid JSON body from {response.request.url}")
            return response.text

    # Convenience methods

    async def get(self, url: str, **kwargs: Any) -> ApiResponse[Any]:
        return await self.request(url, method="GET", **kwargs)

    async def post(self, url: str, body: Any = None, **kwargs: Any) -> ApiResponse[Any]:
        return await self.request(url, method="POST", body=body, **kwargs)

    async def put(self, url: str, body: Any = None, **kwargs: Any) -> ApiResponse[Any]:
        return await self.request(url, method="PUT", body=body, **kwargs)

    async def patch(
        self, url: str, body: Any = None, **kwargs: Any
    ) -> ApiResponse[Any]:
        return await self.request(url, method="PATCH", body=body, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> ApiResponse[Any]:
        return await self.request(url, method="DELETE", **kwargs)

    # Health and status methods

    def get_circuit_breaker_state(self) -> str:
        return self._circuit_breaker.state.value

    def get_cache_stats(self) -> CacheStats:
        return self._cache.get_stats()

    def invalidate_cache(self, pattern: str | None = None) -> int:
        """Drop cached responses matching pattern, or all of them."""
        if pattern is None:
            count = len(self._cache)
            self._cache.clear()
            return count
        return self._cache.invalidate(pattern)

    def get_health_status(self) -> dict[str, Any]:
        return {
            "cache": self._cache.get_stats().to_dict(),
            "circuit_breaker": self._circuit_breaker.get_status(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
        }

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        self._deduplicator.cancel_all()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.debug("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def log_request(request: OutgoingRequest) -> OutgoingRequest:
    """Request interceptor that logs every outgoing call."""
    logger.debug(f"API Request: {request.method} {request.url}")
    return request


def create_api_client(
    settings: Settings | None = None,
    cache: Cache[Any] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ApiClient:
    """Build a client configured from settings, using the shared API cache."""
    settings = settings or get_settings()
    client = ApiClient(
        base_url=settings.api_base_url,
        cache=cache if cache is not None else get_caches().api,
        circuit_breaker=CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=timedelta(seconds=settings.circuit_reset_timeout),
                half_open_requests=settings.circuit_half_open_requests,
            )
        ),
        http_client=http_client,
        default_timeout=settings.api_timeout,
        default_retries=settings.api_retries,
        default_retry_delay=settings.api_retry_delay,
        debug=settings.debug,
    )
    client.add_request_interceptor(log_request)
    return client


# Global client instance
_global_client: ApiClient | None = None


def get_api_client() -> ApiClient:
    """Get the global API client instance."""
    global _global_client
    if _global_client is None:
        _global_client = create_api_client()
    return _global_client


async def close_api_client() -> None:
    """Close the global API client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
