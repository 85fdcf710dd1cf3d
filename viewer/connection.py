"""
Client side of the streaming channel.

State machine: DISCONNECTED -> CONNECTING -> OPEN -> CLOSED. There is no
automatic reconnection; reopening is an explicit call. Replies are correlated
with requests by ``request_id``; a reply whose request already timed out has
no pending entry and goes to the unsolicited-message callback instead.
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import websockets
import websockets.exceptions

from channel.messages import Envelope, ProtocolError, ServerMessage, parse_server_message
from shared.logger import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ConnectionClosed(ConnectionError):
    """The channel is closed or was closed while waiting."""


class ConnectionTimeout(ConnectionClosed, TimeoutError):
    """Opening the channel took longer than the connect timeout."""


class RequestTimeout(TimeoutError):
    """No reply arrived within the request timeout."""

    def __init__(self, request_id: int, timeout: float):
        super().__init__(f"Request {request_id} timed out after {timeout:g}s")
        self.request_id = request_id


class Transport(Protocol):
    """Minimal text-frame transport."""

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str:
        """Return the next frame; raise ConnectionClosed when the peer is gone."""
        ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Transport over the ``websockets`` client library."""

    def __init__(self, ws: Any):
        self._ws = ws

    @classmethod
    async def connect(cls, url: str, open_timeout: Optional[float] = None) -> "WebSocketTransport":
        # Arrow payloads easily exceed the library's default 1 MiB frame limit
        ws = await websockets.connect(url, open_timeout=open_timeout, max_size=None)
        return cls(ws)

    async def send(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionClosed(str(e)) from e

    async def recv(self) -> str:
        try:
            frame = await self._ws.recv()
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionClosed(str(e)) from e
        return frame.decode("utf-8") if isinstance(frame, bytes) else frame

    async def close(self) -> None:
        await self._ws.close()


TransportFactory = Callable[[str, float], Awaitable[Transport]]
MessageCallback = Callable[[ServerMessage], Any]


class Connection:
    """Request/response correlation over one transport.

    ``listen`` must be running for ``request`` to complete: it is the only
    reader of the transport and hands frames out one at a time.
    """

    def __init__(
        self,
        url: str,
        connect_timeout: float = 5.0,
        request_timeout: float = 10.0,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.url = url
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.state = ConnectionState.DISCONNECTED
        self._transport_factory = transport_factory or WebSocketTransport.connect
        self._transport: Optional[Transport] = None
        self._pending: Dict[int, asyncio.Future] = {}

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def open(self) -> None:
        if self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            raise RuntimeError(f"Connection is already {self.state.value}")

        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to %s", self.url)
        try:
            self._transport = await asyncio.wait_for(
                self._transport_factory(self.url, self.connect_timeout),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            self.state = ConnectionState.CLOSED
            raise ConnectionTimeout(f"Timed out connecting to {self.url}") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            self.state = ConnectionState.CLOSED
            raise ConnectionClosed(f"Could not connect to {self.url}: {e}") from e

        self.state = ConnectionState.OPEN
        logger.info("Connected to %s", self.url)

    async def close(self) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self._fail_pending("Connection closed")
        if self._transport is not None:
            await self._transport.close()
            self._transport = None
        logger.info("Disconnected from %s", self.url)

    async def send(self, message: Envelope) -> None:
        if not self.is_open or self._transport is None:
            raise ConnectionClosed(f"Cannot send on a {self.state.value} connection")
        await self._transport.send(message.to_json())

    async def request(self, message: Envelope) -> ServerMessage:
        """Send ``message`` and wait for the reply carrying its request id."""
        request_id = message.request_id
        if request_id is None:
            raise ValueError("request() needs a message with a request_id")

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.send(message)
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Request %d timed out after %.1fs", request_id, self.request_timeout)
            raise RequestTimeout(request_id, self.request_timeout) from e
        finally:
            self._pending.pop(request_id, None)

    async def listen(self, callback: Optional[MessageCallback] = None) -> None:
        """Read frames until the channel closes.

        Replies go to their pending request; everything else goes to
        ``callback``. Malformed frames are logged and dropped.
        """
        if self._transport is None:
            raise ConnectionClosed("Connection is not open")

        try:
            while True:
                text = await self._transport.recv()
                try:
                    message = parse_server_message(text)
                except ProtocolError as e:
                    logger.warning("Dropping malformed server message: %s", e)
                    continue

                future = self._pending.get(message.request_id) if message.request_id is not None else None
                if future is not None and not future.done():
                    future.set_result(message)
                elif callback is not None:
                    result = callback(message)
                    if inspect.isawaitable(result):
                        await result
                else:
                    logger.debug("Ignoring unsolicited %s message", message.type)
        except ConnectionClosed as e:
            if self.state != ConnectionState.CLOSED:
                logger.warning("Connection to %s lost: %s", self.url, e)
        finally:
            self.state = ConnectionState.CLOSED
            self._fail_pending("Connection closed")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionClosed(reason))
        self._pending.clear()
