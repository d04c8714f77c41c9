"""
Reconnecting Transport for Parley.

A long-lived duplex JSON channel over websockets with automatic
reconnection and pub-sub fan-out of inbound frames.

State machine:

    DISCONNECTED --connect()--> CONNECTING --open--> CONNECTED
    CONNECTED --close/error--> DISCONNECTED (reconnect scheduled)
    DISCONNECTED --attempts exhausted--> FAILED

Reconnect delay after the n-th consecutive failure is
min(reconnect_delay * 2^n, max_reconnect_delay). The attempt counter
resets only when a connection opens.

Frames on the wire are JSON objects {"type": ..., "payload": ...}.
Inbound frames are delivered in arrival order to listeners registered
for their type. The transport never raises to callers: failures are
reported as "error" events, and running out of attempts emits a final
error with "fatal": True.

Events:
    connection    {"status": "connected" | "disconnected"}
    reconnecting  {"attempt", "next_attempt_in", "max_attempts"}
    error         {"message", ["fatal"]}
    <type>        payload of an inbound frame
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from parley.providers.retry import ExponentialBackoff

from .protocol import Connection, Connector, TransportState, websockets_connector

if TYPE_CHECKING:
    from parley.config.schemas import TransportSettings

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class ReconnectingTransport:
    """
    Websocket transport with exponential-backoff reconnection.

    Example:
        transport = ReconnectingTransport("ws://localhost:3000")
        transport.on("message", handle_message)
        transport.on("error", handle_error)
        transport.connect()

        await transport.send("chat", {"content": "Hi"})
        ...
        await transport.aclose()
    """

    def __init__(
        self,
        url: str = "ws://localhost:3000",
        *,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 10.0,
        open_timeout: float = 10.0,
        ping_interval: float | None = None,
        connector: Connector | None = None,
    ):
        """
        Initialize the transport (no connection is opened yet).

        Args:
            url: Websocket endpoint
            max_reconnect_attempts: Consecutive reconnects before FAILED
            reconnect_delay: Base delay in seconds
            max_reconnect_delay: Delay cap in seconds
            open_timeout: Handshake timeout for the default connector
            ping_interval: Keep-alive ping period (None disables)
            connector: Callable opening a Connection for a URL
        """
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.ping_interval = ping_interval
        self._backoff = ExponentialBackoff(
            base=reconnect_delay,
            multiplier=2.0,
            max_delay=max_reconnect_delay,
        )
        self._connector = connector or websockets_connector(open_timeout)

        self._state = TransportState.DISCONNECTED
        self._connecting = False
        self._reconnect_attempts = 0
        self._connection: Connection | None = None
        self._task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._teardown: list[asyncio.Future[Any]] = []
        self._listeners: dict[str, list[Listener]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: TransportSettings,
        connector: Connector | None = None,
    ) -> ReconnectingTransport:
        """Create a transport from TransportSettings."""
        return cls(
            settings.url,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            reconnect_delay=settings.reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
            open_timeout=settings.open_timeout,
            ping_interval=settings.ping_interval,
            connector=connector,
        )

    # ==================== State ====================

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def reconnect_delay_for(self, attempt: int) -> float:
        """Delay before reconnect number `attempt` (1-indexed)."""
        return self._backoff.get_delay(attempt + 1)

    # ==================== Lifecycle ====================

    def connect(self) -> None:
        """
        Start connecting on the running event loop.

        Does nothing while a connection is being opened or is open. Called
        outside a running loop, it emits an "error" event and leaves the
        state unchanged.
        """
        if self._connecting or self._state in (
            TransportState.CONNECTING,
            TransportState.CONNECTED,
        ):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"Cannot connect to {self.url}: no running event loop")
            self._emit("error", {"message": "connect() requires a running event loop"})
            return

        self._cancel_reconnect()
        self._connecting = True
        self._state = TransportState.CONNECTING
        logger.info(f"Attempting WebSocket connection to {self.url}")
        self._task = loop.create_task(self._run())

    def disconnect(self) -> None:
        """
        Tear the connection down and stop reconnecting.

        Cancels any pending reconnect and clears every listener, so no
        further events are emitted. Without a running loop the socket is
        dropped instead of closed.
        """
        self._cancel_reconnect()
        self._stop_ping()

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
            self._teardown.append(task)

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                closing = asyncio.get_running_loop().create_task(_close_quietly(connection))
            except RuntimeError:
                logger.warning(f"No running event loop; dropped connection to {self.url}")
            else:
                self._teardown.append(closing)

        for listeners in self._listeners.values():
            listeners.clear()
        self._listeners.clear()

        self._connecting = False
        self._state = TransportState.DISCONNECTED
        logger.debug(f"Disconnected from {self.url}")

    async def aclose(self) -> None:
        """Disconnect and wait for the teardown to finish."""
        self.disconnect()
        pending, self._teardown = self._teardown, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ==================== Connection loop ====================

    def _is_current(self) -> bool:
        return self._task is not None and self._task is _current_task()

    async def _run(self) -> None:
        try:
            connection = await self._connector(self.url)
        except Exception as e:
            if not self._is_current():
                return
            logger.error(f"WebSocket connection error: {e}")
            self._connecting = False
            self._state = TransportState.DISCONNECTED
            self._emit("error", {"message": str(e) or "WebSocket connection failed"})
            self._schedule_reconnect()
            return

        if not self._is_current():
            await _close_quietly(connection)
            return

        self._connection = connection
        self._connecting = False
        self._state = TransportState.CONNECTED
        self._reconnect_attempts = 0
        logger.info(f"WebSocket connected to {self.url}")
        self._emit("connection", {"status": "connected"})

        if self.ping_interval and self._is_current():
            self._ping_task = asyncio.ensure_future(self._ping_loop(connection))

        try:
            while self._connection is connection:
                raw = await connection.recv()
                self._dispatch(raw)
        except Exception as e:
            logger.info(f"WebSocket connection closed: {e}")
        finally:
            self._stop_ping()

        if not self._is_current() or self._connection is not connection:
            return

        self._connection = None
        self._state = TransportState.DISCONNECTED
        self._emit("connection", {"status": "disconnected"})
        self._schedule_reconnect()
        await _close_quietly(connection)

    async def _ping_loop(self, connection: Connection) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await connection.ping()
            except Exception as e:
                logger.warning(f"WebSocket ping failed: {e}")
                return

    def _stop_ping(self) -> None:
        task, self._ping_task = self._ping_task, None
        if task is not None and not task.done():
            task.cancel()

    # ==================== Reconnection ====================

    def _schedule_reconnect(self) -> None:
        if not self._is_current():
            # A listener called disconnect() or connect()
            return

        if self._reconnect_attempts >= self.max_reconnect_attempts:
            self._task = None
            self._state = TransportState.FAILED
            logger.error(
                f"Max reconnection attempts reached ({self.max_reconnect_attempts}) for {self.url}"
            )
            self._emit("error", {"message": "Max reconnection attempts reached", "fatal": True})
            return

        self._reconnect_attempts += 1
        attempt = self._reconnect_attempts
        delay = self.reconnect_delay_for(attempt)
        logger.info(
            f"Reconnecting in {delay:.2f}s (attempt {attempt}/{self.max_reconnect_attempts})"
        )
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._on_reconnect_timer, attempt, delay
        )

    def _on_reconnect_timer(self, attempt: int, delay: float) -> None:
        self._reconnect_handle = None
        task = self._task
        self._emit(
            "reconnecting",
            {
                "attempt": attempt,
                "next_attempt_in": delay,
                "max_attempts": self.max_reconnect_attempts,
            },
        )
        # A listener may have disconnected or reconnected already
        if task is not None and self._task is task:
            self.connect()

    def _cancel_reconnect(self) -> None:
        handle, self._reconnect_handle = self._reconnect_handle, None
        if handle is not None:
            handle.cancel()

    # ==================== Messaging ====================

    async def send(self, message_type: str, payload: Any = None) -> None:
        """
        Send a {"type", "payload"} frame.

        Never raises: when not connected, or when the write fails, an
        "error" event is emitted instead.
        """
        connection = self._connection
        if connection is None or self._state != TransportState.CONNECTED:
            logger.warning("WebSocket is not connected, cannot send message")
            self._emit("error", {"message": "WebSocket is not connected"})
            return

        frame = json.dumps({"type": message_type, "payload": {} if payload is None else payload})
        try:
            await connection.send(frame)
        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            self._emit("error", {"message": str(e) or "Failed to send message"})

    def _dispatch(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            data = json.loads(raw)
        except ValueError:
            data = None

        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            logger.warning(f"Invalid message format: {raw[:100]!r}")
            self._emit("error", {"message": "Invalid message format"})
            return

        self._emit(data["type"], data.get("payload"))

    # ==================== Pub-sub ====================

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """
        Register a listener for an event type.

        Returns:
            Function that removes the listener
        """
        listeners = self._listeners.setdefault(event, [])
        if callback not in listeners:
            listeners.append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: str, callback: Listener) -> None:
        """Remove a listener (no-op if it is not registered)."""
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: str, data: Any) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for callback in list(listeners):
            # Skip listeners removed by an earlier callback in this dispatch
            if callback not in listeners:
                continue
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error in event listener for {event}: {e}", exc_info=True)

    def __repr__(self) -> str:
        return (
            f"ReconnectingTransport(url='{self.url}', state={self._state.value}, "
            f"attempts={self._reconnect_attempts}/{self.max_reconnect_attempts})"
        )


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


async def _close_quietly(connection: Connection) -> None:
    try:
        await connection.close()
    except Exception as e:
        logger.debug(f"Error closing WebSocket connection: {e}")


__all__ = ["Listener", "ReconnectingTransport"]
