"""
RequestDeduplicator - Pending-request registry keyed by request fingerprint.

GET requests are keyed by "{METHOD}:{url}:{body}". While a fingerprint has
a request in flight, later callers join it and settle with the same
response or the same error.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Registry of in-flight requests, one task per fingerprint.

    The lookup and the registration happen in the same step, with no
    suspension in between, so a fingerprint never has two tasks at once.
    A task removes its own entry when it settles; cancel_all() empties the
    registry immediately.

    Usage:
        pending = RequestDeduplicator()
        response = await pending.dedupe(
            "GET:https://gpx.example.com/api/routes:undefined",
            lambda: client.get("/api/routes"),
        )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Join the pending request for key, or start one with request_fn.

        Cancelling a caller only detaches that caller; the shared request
        keeps running for the others.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.joined += 1
            self._log(f"join {key[:80]}")
        else:
            self._stats.started += 1
            self._log(f"start {key[:80]}")
            task = asyncio.create_task(self._run(key, request_fn))
            self._in_flight[key] = task

        return await asyncio.shield(task)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def _run(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        task = asyncio.current_task()
        try:
            return await request_fn()
        finally:
            # After cancel_all() the key may already belong to a newer request
            if self._in_flight.get(key) is task:
                del self._in_flight[key]
            self._log(f"settled {key[:80]}")

    def cancel_all(self) -> int:
        """Cancel every pending request and empty the registry."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        if count:
            logger.debug(f"[Deduplicator] cancelled {count} pending requests")
        return count

    def get_in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> "DeduplicatorStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


@dataclass
class DeduplicatorStats:
    """Counters for the pending-request registry."""

    started: int = 0  # requests that reached request_fn
    joined: int = 0  # callers served by a request already in flight
    in_flight: int = 0

    @property
    def join_rate(self) -> float:
        """Share of callers that did not trigger a request of their own."""
        callers = self.started + self.joined
        return self.joined / callers if callers else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "joined": self.joined,
            "in_flight": self.in_flight,
            "join_rate": f"{self.join_rate:.2%}",
        }
