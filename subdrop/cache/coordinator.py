"""Request coordination for remote lookups.

Every network-backed lookup goes through :class:`RequestCoordinator`, which
layers, in order:

1. cache-first reads (a live entry never reaches the producer),
2. in-flight de-duplication (concurrent callers for one key share a task),
3. per-endpoint minimum-interval rate limiting (fails fast, never queues),
4. bounded retry with exponential backoff,
5. caching of the settled value, including negative (None) results.
"""

import asyncio
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from subdrop.cache.store import CacheStore
from subdrop.core.errors import RateLimitedError
from subdrop.core.retry import retry_async

Producer = Callable[[], Awaitable[Any]]


class RequestCoordinator:
    """Cache-first, de-duplicated, rate-limited execution of async lookups."""

    def __init__(
        self,
        cache: CacheStore,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache = cache
        self._base_delay = base_delay
        self._sleep = sleep
        self._clock = clock
        self._in_flight: dict[str, asyncio.Task] = {}
        self._last_call: dict[str, float] = {}
        self._request_counts: Counter[str] = Counter()

    @property
    def cache(self) -> CacheStore:
        return self._cache

    async def resolve(
        self,
        key: str,
        producer: Producer,
        *,
        ttl: float | None = None,
        endpoint: str | None = None,
        rate_limit_window: float = 0.0,
        max_attempts: int = 1,
        model: type[BaseModel] | None = None,
    ) -> Any:
        """Resolve ``key``, calling ``producer`` at most once across concurrent callers.

        Args:
            key: Cache key, ``<category>:<query>``
            producer: Zero-argument coroutine factory doing the remote call
            ttl: Cache lifetime in seconds (store default when None)
            endpoint: Rate-limit bucket name, defaults to ``key``
            rate_limit_window: Minimum seconds between producer calls on the endpoint
            max_attempts: Attempts before the error is surfaced
            model: Pydantic model the value is stored as; cached JSON is
                validated back into it

        Returns:
            The cached or freshly produced value (may be None)

        Raises:
            RateLimitedError: Called inside the window and attempts are exhausted
            Whatever the producer raises once attempts are exhausted
        """
        # No await between the cache check and the in-flight insert, so two
        # callers can never both start a producer for one key.
        entry = self._cache.lookup(key)
        if entry is not None:
            try:
                value = _load(entry.value, model)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable cache entry {key}: {e}")
                self._cache.delete(key)
            else:
                logger.debug(f"Cache hit: {key}")
                return value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._produce(
                    key,
                    producer,
                    ttl=ttl,
                    endpoint=endpoint or key,
                    rate_limit_window=rate_limit_window,
                    max_attempts=max_attempts,
                    model=model,
                )
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            logger.debug(f"Joining in-flight request: {key}")

        # shield: one caller giving up must not cancel the shared request
        return await asyncio.shield(task)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def active_keys(self) -> list[str]:
        return list(self._in_flight)

    def request_count(self, endpoint: str) -> int:
        """Producer invocations made on ``endpoint`` so far."""
        return self._request_counts[endpoint]

    def check_rate_limit(self, endpoint: str, window: float) -> None:
        """Record a call on ``endpoint`` or raise if it is inside the window.

        Raises:
            RateLimitedError: Less than ``window`` seconds since the last call
        """
        if window <= 0:
            return
        now = self._clock()
        last = self._last_call.get(endpoint)
        if last is not None:
            elapsed = now - last
            if elapsed < window:
                raise RateLimitedError(endpoint, window - elapsed)
        self._last_call[endpoint] = now

    async def _produce(
        self,
        key: str,
        producer: Producer,
        *,
        ttl: float | None,
        endpoint: str,
        rate_limit_window: float,
        max_attempts: int,
        model: type[BaseModel] | None,
    ) -> Any:
        async def attempt():
            self.check_rate_limit(endpoint, rate_limit_window)
            self._request_counts[endpoint] += 1
            return await producer()

        value = await retry_async(
            attempt,
            max_attempts=max_attempts,
            base_delay=self._base_delay,
            sleep=self._sleep,
            description=key,
        )
        self._cache.set(key, _dump(value, model), ttl)
        return value

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Request failed: {key}: {task.exception()}")


def _dump(value: Any, model: type[BaseModel] | None) -> Any:
    if model is not None and isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _load(value: Any, model: type[BaseModel] | None) -> Any:
    if model is not None and value is not None:
        return model.model_validate(value)
    return value
