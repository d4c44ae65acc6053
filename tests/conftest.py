"""Shared fixtures for paceline tests."""

from typing import Any, Callable

import httpx
import pytest

from paceline.services.client import ApiClient

BASE_URL = "https://api.test"


class RecordingHandler:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, responder: Callable[[httpx.Request, int], Any]):
        self._responder = responder
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self._responder(request, len(self.requests))
        if hasattr(result, "__await__"):
            result = await result
        return result


@pytest.fixture
def make_client() -> Callable[..., tuple[ApiClient, RecordingHandler]]:
    """Build an ApiClient whose HTTP traffic goes to a recording handler."""

    def factory(
        responder: Callable[[httpx.Request, int], Any],
        **kwargs: Any,
    ) -> tuple[ApiClient, RecordingHandler]:
        handler = RecordingHandler(responder)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("default_retry_delay", 0.01)
        client = ApiClient(base_url=BASE_URL, http_client=http_client, **kwargs)
        return client, handler

    return factory
