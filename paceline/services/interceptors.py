"""
Interceptor pipelines for the API client.

Each pipeline runs its interceptors in registration order. Registration
replaces the stored tuple, so a request that has already started keeps
running against the snapshot it began with.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")

Interceptor = Callable[[T], T | Awaitable[T]]


@dataclass
class OutgoingRequest:
    """The parts of a request that request interceptors may change."""

    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


class InterceptorPipeline(Generic[T]):
    """Ordered chain of interceptors; each receives the previous one's result."""

    def __init__(self, name: str):
        self.name = name
        self._interceptors: tuple[Interceptor[T], ...] = ()

    def add(self, interceptor: Interceptor[T]) -> Callable[[], None]:
        """
        Register an interceptor at the end of the chain.

        Returns a function that removes it again.
        """
        self._interceptors = (*self._interceptors, interceptor)

        def remove() -> None:
            self._interceptors = tuple(
                i for i in self._interceptors if i is not interceptor
            )

        return remove

    def __len__(self) -> int:
        return len(self._interceptors)

    async def run(self, value: T) -> T:
        for interceptor in self._interceptors:
            result = interceptor(value)
            if inspect.isawaitable(result):
                result = await result
            value = result
        return value
