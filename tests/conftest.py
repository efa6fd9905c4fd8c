"""Shared fixtures for sheets-rewrite tests.

Provides deterministic time control (fake sleep, fake wall clock), httpx
error/response builders, and a completion client wired to a MockTransport.
"""

import json

import httpx
import pytest

from sheets_rewrite.config import CompletionConfig

TEST_API_KEY = "csk-testkey0000000000000000000000"
COMPLETIONS_URL = "https://api.cerebras.ai/v1/chat/completions"


class FakeClock:
    """Manually advanced wall clock in milliseconds."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class SleepRecorder:
    """Async sleep stand-in that records requested durations (seconds)."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


def make_status_error(status: int, body: str = "") -> httpx.HTTPStatusError:
    """Build the httpx error raised by ``raise_for_status`` for ``status``."""
    request = httpx.Request("POST", COMPLETIONS_URL)
    response = httpx.Response(status, request=request, text=body)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def completion_body(content: str) -> dict:
    return {
        "id": "chatcmpl-test",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
    }


@pytest.fixture
def completion_config():
    return CompletionConfig(api_key=TEST_API_KEY)


@pytest.fixture
def recorded_requests():
    return []


@pytest.fixture
def make_transport(recorded_requests):
    """Factory for a MockTransport that replays ``responses`` in order.

    Each item is either an ``httpx.Response`` or an exception to raise.
    The last item is repeated once the list is exhausted.
    """

    def factory(*responses):
        queue = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(json.loads(request.content))
            item = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(item, Exception):
                raise item
            return item

        return httpx.MockTransport(handler)

    return factory
