"""
Pytest configuration and fixtures for Parley tests.
"""

import asyncio
import json
import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from parley.providers import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from parley.config.schemas import ProviderSettings  # noqa: E402
from parley.providers.errors import ProviderError, ProviderErrorKind  # noqa: E402


# =============================================================================
# Provider fixtures
# =============================================================================


def make_settings(**overrides) -> ProviderSettings:
    """ProviderSettings with a credential and fast retries."""
    values = {
        "model": "test-model",
        "api_key": "test-key",
        "max_retries": 3,
        "retry_delay": 1.0,
        "timeout": 5.0,
    }
    values.update(overrides)
    return ProviderSettings(**values)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def sse_body(*frames, done: bool = True) -> bytes:
    """Encode JSON frames as an SSE response body."""
    lines = [f"data: {json.dumps(frame)}\n\n" for frame in frames]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def rate_limited(provider: str = "mock") -> ProviderError:
    return ProviderError(
        ProviderErrorKind.RATE_LIMITED,
        "Rate limit exceeded. Too Many Requests",
        provider,
        http_status=429,
    )


class ScriptedProvider:
    """
    Chat provider double driven by a script of outcomes.

    Each call pops the next outcome: a string is returned (or streamed as
    chunks split on '|'), an exception is raised.
    """

    def __init__(self, name: str, *outcomes):
        self._name = name
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, object]] = []
        self.stream_closed = False

    @property
    def name(self) -> str:
        return self._name

    def _next(self):
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def chat(self, content, history=None, options=None):
        self.calls.append(("chat", content))
        return self._next()

    async def chat_stream(self, content, history=None, options=None):
        self.calls.append(("chat_stream", content))
        try:
            outcome = self.outcomes.pop(0) if self.outcomes else "ok"
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, tuple):
                # (chunks, error): yield the chunks then fail
                chunks, error = outcome
                for chunk in chunks:
                    yield chunk
                raise error
            for chunk in outcome.split("|"):
                yield chunk
        finally:
            self.stream_closed = True


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


# =============================================================================
# Transport fixtures
# =============================================================================


class ConnectionClosed(Exception):
    """Raised by FakeConnection.recv() once the connection is closed."""


class FakeConnection:
    """In-memory websocket connection."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self.pings = 0
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, message) -> None:
        """Queue an inbound frame (dicts are JSON-encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(None)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed("connection is closed")
        self.sent.append(message)

    async def recv(self):
        if self.closed:
            raise ConnectionClosed("connection is closed")
        message = await self._inbox.get()
        if message is None:
            self.closed = True
            raise ConnectionClosed("connection closed by server")
        return message

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    async def ping(self) -> None:
        self.pings += 1


class FakeConnector:
    """
    Connector double.

    Each call pops the next outcome: a FakeConnection is returned, an
    exception is raised. Once the script is exhausted every attempt fails.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []

    @property
    def attempts(self) -> int:
        return len(self.urls)

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        await asyncio.sleep(0)
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError("refused")
        if isinstance(outcome, BaseException):
            raise outcome
        self.connections.append(outcome)
        return outcome
