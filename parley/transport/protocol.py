"""
Transport Protocol for Parley.

Defines the connection interface the reconnecting transport drives and
the default connector that opens real websocket connections.

The connector is injectable so the transport can run against any
object with the Connection shape (tests use in-memory fakes).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import websockets


class TransportState(str, Enum):
    """Lifecycle state of a reconnecting transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@runtime_checkable
class Connection(Protocol):
    """
    One open duplex connection.

    Matches the subset of websockets' ClientConnection the transport
    uses. recv() raises once the connection is closed.
    """

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...

    async def ping(self) -> Any: ...


Connector = Callable[[str], Awaitable[Connection]]


def websockets_connector(open_timeout: float = 10.0) -> Connector:
    """
    Connector backed by the websockets library.

    Library keep-alive is disabled; the transport sends its own pings
    when configured with a ping interval.
    """

    async def connect(url: str) -> Connection:
        return await websockets.connect(url, open_timeout=open_timeout, ping_interval=None)

    return connect


__all__ = [
    "Connection",
    "Connector",
    "TransportState",
    "websockets_connector",
]
