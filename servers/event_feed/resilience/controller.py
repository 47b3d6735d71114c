"""Single entry point for every outbound provider call.

guarded_call() applies, in order: request coalescing, the source's circuit
breaker, the source's rate limiter, and a hard timeout around the HTTP call.
The HTTP outcome is fed back into the breaker. Nothing outside this module
reads or mutates breaker or limiter state.

There is no automatic retry; a failed call surfaces as an exception and the
caller decides whether to ask again.
"""

import asyncio
import time
from typing import Any, Callable, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from ..config import FeedSettings
from ..errors import ProviderError, RateLimitedError, SourceTimeoutError
from .circuit_breaker import CircuitBreaker
from .coalescer import RequestCoalescer
from .rate_limiter import SlidingWindowRateLimiter

logger = structlog.get_logger()


class RequestDescriptor(BaseModel):
    """Provider-agnostic description of one HTTP request."""

    method: str = "GET"
    url: str
    params: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)

    def dedup_key(self, source: str) -> str:
        """Key identifying identical requests; headers carry credentials only."""
        query = "&".join(f"{k}={v}" for k, v in sorted(self.params.items()))
        return f"{source}:{self.method.upper()}:{self.url}?{query}"


class ResilienceController:
    """Owns the per-source breakers and limiters plus the shared HTTP client."""

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or FeedSettings()
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._limiters: dict[str, SlidingWindowRateLimiter] = {}
        self._coalescer = RequestCoalescer()

    async def __aenter__(self) -> "ResilienceController":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this controller created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    def breaker_for(self, source: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a source."""
        if source not in self._breakers:
            config = self.settings.breaker
            self._breakers[source] = CircuitBreaker(
                failure_threshold=config.failure_threshold,
                recovery_timeout=config.recovery_timeout,
                half_open_max_probes=config.half_open_max_probes,
                name=source,
                clock=self._clock,
            )
        return self._breakers[source]

    def limiter_for(self, source: str) -> SlidingWindowRateLimiter:
        """Get or create the rate limiter for a source."""
        if source not in self._limiters:
            config = self.settings.rate_limit_for(source)
            self._limiters[source] = SlidingWindowRateLimiter(
                requests_per_second=config.requests_per_second,
                requests_per_minute=config.requests_per_minute,
                name=source,
                clock=self._clock,
            )
        return self._limiters[source]

    def is_open(self, source: str) -> bool:
        """Whether the source's breaker is currently rejecting calls."""
        return source in self._breakers and self._breakers[source].is_open

    async def guarded_call(self, source: str, request: RequestDescriptor) -> Any:
        """Issue a request to a provider through every protection.

        Args:
            source: Provider name; selects the breaker and limiter
            request: What to send

        Returns:
            Decoded JSON body of a 2xx response

        Raises:
            CircuitBreakerOpenError: Source excluded, no network attempt made
            RateLimitedError: Source's ceiling reached, carries retry_after
            SourceTimeoutError: Call abandoned after the configured timeout
            ProviderError: Non-2xx response or transport failure
        """
        key = request.dedup_key(source)
        if key in self._coalescer:
            return await self._coalescer.run(key, lambda: self._send(source, request))

        breaker = self.breaker_for(source)
        breaker.before_call()
        try:
            self.limiter_for(source).acquire()
        except RateLimitedError:
            breaker.release_probe()
            raise

        return await self._coalescer.run(key, lambda: self._send(source, request))

    async def _send(self, source: str, request: RequestDescriptor) -> Any:
        breaker = self.breaker_for(source)
        timeout = self.settings.request_timeout
        started = self._clock()

        try:
            response = await asyncio.wait_for(
                self._get_client().request(
                    request.method,
                    request.url,
                    params=request.params,
                    headers=request.headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            error = SourceTimeoutError(source, timeout)
            breaker.record_failure(error)
            logger.warning("source_timeout", source=source, timeout=timeout)
            raise error from e
        except httpx.HTTPError as e:
            error = ProviderError(source, str(e) or type(e).__name__)
            breaker.record_failure(error)
            logger.warning("source_request_failed", source=source, error=str(error))
            raise error from e
        except asyncio.CancelledError:
            breaker.release_probe()
            raise

        status = response.status_code
        logger.debug(
            "source_response",
            source=source,
            status=status,
            duration_ms=int((self._clock() - started) * 1000),
        )

        if response.is_success:
            breaker.record_success()
            try:
                return response.json()
            except ValueError as e:
                raise ProviderError(source, "response body is not JSON", status) from e

        error = ProviderError(source, response.reason_phrase or "error", status)
        if status >= 500 or status == 429:
            breaker.record_failure(error)
        else:
            breaker.release_probe()
        logger.warning("source_http_error", source=source, status=status)
        raise error

    def get_status(self) -> dict[str, Any]:
        """Breaker and limiter status for every source seen so far."""
        return {
            source: {
                "breaker": breaker.get_status(),
                "rate_limit": self.limiter_for(source).get_status(),
            }
            for source, breaker in self._breakers.items()
        }
