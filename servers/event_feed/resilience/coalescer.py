"""In-flight request coalescing."""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class RequestCoalescer:
    """Share one pending call among concurrent identical requests.

    The first caller for a key starts the underlying coroutine as a task.
    Callers arriving while it is outstanding await the same task, so every
    waiter sees the same result or the same exception. Waiters are shielded:
    one cancelled waiter does not cancel the shared call.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Future[Any]] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Join the call in flight for ``key`` or start one with ``factory``."""
        future = self._in_flight.get(key)
        if future is not None:
            logger.debug("request_coalesced", key=key)
        else:
            future = asyncio.ensure_future(factory())
            self._in_flight[key] = future
            future.add_done_callback(lambda _: self._forget(key, future))
        return await asyncio.shield(future)

    def _forget(self, key: str, future: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(key) is future:
            del self._in_flight[key]
        # Mark the exception retrieved so an unawaited failure is not reported
        if not future.cancelled():
            future.exception()
