"""Resilience patterns protecting every outbound provider call."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from .coalescer import RequestCoalescer
from .controller import RequestDescriptor, ResilienceController
from .health import HealthMonitor
from .rate_limiter import SlidingWindowRateLimiter

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitBreakerOpenError",
    "SlidingWindowRateLimiter",
    "RequestCoalescer",
    "RequestDescriptor",
    "ResilienceController",
    "HealthMonitor",
]
