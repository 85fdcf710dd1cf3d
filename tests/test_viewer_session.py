"""
Tests for the viewer connection and the async session runner.

The session talks to an in-memory transport that answers through a real
server-side WebSocketManager backed by DuckDB.

Run tests:
    pytest tests/test_viewer_session.py -v
"""

import asyncio
import json
from unittest.mock import patch

import pyarrow as pa
import pytest

from backend.selections import SelectionStore
from channel.manager import WebSocketManager
from channel.messages import ArrowDataMessage, PingRequest, PongMessage
from shared.codec import encode_table, to_base64
from viewer.config import ViewerConfig
from viewer.connection import (
    Connection,
    ConnectionClosed,
    ConnectionState,
    ConnectionTimeout,
    RequestTimeout,
)
from viewer.session import ViewerSession


class LoopbackTransport:
    """In-memory transport; replies come from ``manager`` when one is given."""

    def __init__(self, manager=None):
        self.manager = manager
        self.sent = []
        self.closed = False
        self._inbox = asyncio.Queue()

    async def send(self, text):
        if self.closed:
            raise ConnectionClosed("transport closed")
        self.sent.append(json.loads(text))
        if self.manager is not None:
            reply = await self.manager.handle_message(self, text)
            if reply is not None:
                self._inbox.put_nowait(reply.to_json())

    def push(self, text):
        self._inbox.put_nowait(text)

    def drop(self):
        self._inbox.put_nowait(None)

    async def recv(self):
        text = await self._inbox.get()
        if text is None:
            raise ConnectionClosed("remote closed")
        return text

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(None)


class NullRowsTransport(LoopbackTransport):
    """Answers every query with a row set whose coordinates contain nulls."""

    async def send(self, text):
        message = json.loads(text)
        if message["type"] != "query":
            return await super().send(text)
        self.sent.append(message)
        table = pa.table({"id": [1, 2], "x": [1.0, None], "y": [0.0, 0.0]})
        reply = ArrowDataMessage(data=to_base64(encode_table(table)), rows=2, request_id=message["request_id"])
        self._inbox.put_nowait(reply.to_json())


def _factory(transport):
    async def connect(url, timeout):
        return transport

    return connect


# ============================================================================
# Connection
# ============================================================================


class TestConnection:
    def test_open_and_close(self):
        async def scenario():
            connection = Connection("ws://test/ws", transport_factory=_factory(LoopbackTransport()))
            assert connection.state == ConnectionState.DISCONNECTED
            await connection.open()
            assert connection.is_open
            await connection.close()
            return connection.state

        assert asyncio.run(scenario()) == ConnectionState.CLOSED

    def test_connect_timeout(self):
        async def never_connects(url, timeout):
            await asyncio.sleep(10)

        async def scenario():
            connection = Connection("ws://test/ws", connect_timeout=0.01, transport_factory=never_connects)
            with pytest.raises(ConnectionTimeout):
                await connection.open()
            return connection.state

        assert asyncio.run(scenario()) == ConnectionState.CLOSED

    def test_connection_refused(self):
        async def refuses(url, timeout):
            raise ConnectionRefusedError("refused")

        async def scenario():
            connection = Connection("ws://test/ws", transport_factory=refuses)
            with pytest.raises(ConnectionClosed, match="Could not connect"):
                await connection.open()

        asyncio.run(scenario())

    def test_send_requires_open_connection(self):
        async def scenario():
            connection = Connection("ws://test/ws")
            with pytest.raises(ConnectionClosed):
                await connection.send(PingRequest())

        asyncio.run(scenario())

    def test_request_is_correlated(self):
        async def scenario():
            transport = LoopbackTransport(WebSocketManager())
            connection = Connection("ws://test/ws", transport_factory=_factory(transport))
            await connection.open()
            listener = asyncio.create_task(connection.listen())
            reply = await connection.request(PingRequest(request_id=11))
            await connection.close()
            await listener
            return reply

        reply = asyncio.run(scenario())
        assert isinstance(reply, PongMessage)
        assert reply.request_id == 11

    def test_request_timeout_and_late_reply(self):
        unsolicited = []

        async def scenario():
            transport = LoopbackTransport()
            connection = Connection("ws://test/ws", request_timeout=0.05, transport_factory=_factory(transport))
            await connection.open()
            listener = asyncio.create_task(connection.listen(unsolicited.append))

            with pytest.raises(RequestTimeout):
                await connection.request(PingRequest(request_id=1))
            assert connection.pending_count == 0

            transport.push(PongMessage(request_id=1).to_json())
            await asyncio.sleep(0.01)
            await connection.close()
            await listener

        asyncio.run(scenario())
        assert [m.request_id for m in unsolicited] == [1]

    def test_remote_close_fails_pending_requests(self):
        async def scenario():
            transport = LoopbackTransport()
            connection = Connection("ws://test/ws", transport_factory=_factory(transport))
            await connection.open()
            listener = asyncio.create_task(connection.listen())
            request = asyncio.create_task(connection.request(PingRequest(request_id=1)))
            await asyncio.sleep(0.01)
            transport.drop()
            with pytest.raises(ConnectionClosed):
                await request
            await listener
            return connection.state

        assert asyncio.run(scenario()) == ConnectionState.CLOSED

    def test_malformed_frames_are_dropped(self):
        received = []

        async def scenario():
            transport = LoopbackTransport()
            connection = Connection("ws://test/ws", transport_factory=_factory(transport))
            await connection.open()
            transport.push("{nope")
            transport.push('{"type": "mystery"}')
            transport.push(PongMessage().to_json())
            transport.drop()
            await connection.listen(received.append)

        asyncio.run(scenario())
        assert len(received) == 1
        assert isinstance(received[0], PongMessage)


# ============================================================================
# Session
# ============================================================================


@pytest.fixture
def server(grid_backend):
    return WebSocketManager(backend=grid_backend, store=SelectionStore())


def _session(transport, statuses):
    return ViewerSession(
        "ws://test/ws",
        config=ViewerConfig(initial_budget=1_000),
        width=100,
        height=100,
        on_status=statuses.append,
        transport_factory=_factory(transport),
        tick_interval=None,
    )


class TestViewerSession:
    def test_start_loads_bounds_and_points(self, server):
        statuses = []
        renders = []

        async def scenario():
            transport = LoopbackTransport(server)
            session = _session(transport, statuses)
            session.on_render = renders.append
            await session.start()
            await session.wait_idle()
            await session.stop()
            return session, transport

        session, transport = asyncio.run(scenario())

        assert session.context.bounds.total_rows == 100
        assert len(session.context.cache) == 100
        # The first fetch fills the cache; the top-up finds nothing new and stops
        assert [m["type"] for m in transport.sent] == ["metadata", "query", "query"]
        assert transport.sent[1]["query"]["limit"] == 1_000
        assert "exclude_ids" not in transport.sent[1]["query"]
        assert len(transport.sent[2]["query"]["exclude_ids"]) == 100
        assert transport.sent[2]["query"]["limit"] == 900
        assert renders and len(renders[-1].points) == 100
        assert any("Received 100 points" in s.message for s in statuses)

    def test_select_persists_full_rows(self, server):
        statuses = []

        async def scenario():
            session = _session(LoopbackTransport(server), statuses)
            async with session:
                await session.wait_idle()
                session.select((0.0, 0.0), (100.0, 100.0), name="everything")
                await session.wait_idle()
                session.select((0.0, 100.0), (100.0, 0.0))
                await session.wait_idle()
            return session

        session = asyncio.run(scenario())

        rows = server.store.get("everything")
        assert len(rows) == 100
        assert {"px", "py", "group", "weight"} <= set(rows.columns)
        assert session.context.selections.saved == {"everything": 100, "Selection2": 100}
        assert session.context.selections.counter == 3

    def test_empty_selection_sends_nothing(self, server):
        statuses = []

        async def scenario():
            transport = LoopbackTransport(server)
            session = _session(transport, statuses)
            async with session:
                await session.wait_idle()
                sent_before = len(transport.sent)
                session.select((1.0, 1.0), (2.0, 2.0))
                await session.wait_idle()
                return len(transport.sent) - sent_before

        assert asyncio.run(scenario()) == 0
        assert statuses[-1].message == "No points in selection"
        assert len(server.store) == 0

    def test_query_error_is_surfaced(self):
        statuses = []

        async def scenario():
            session = _session(LoopbackTransport(WebSocketManager()), statuses)
            async with session:
                await session.wait_idle()
            return session

        session = asyncio.run(scenario())
        assert statuses[0].level == "error"
        assert "No dataset loaded" in statuses[0].message
        assert session.context.bounds is None

    def test_remote_close_and_restart(self, server):
        statuses = []

        async def scenario():
            first = LoopbackTransport(server)
            session = _session(first, statuses)
            await session.start()
            await session.wait_idle()
            first.drop()
            await asyncio.sleep(0.01)
            await session.wait_idle()
            lost = session.connection.state

            second = LoopbackTransport(server)
            session.connection._transport_factory = _factory(second)
            old_context = session.context
            await session.start()
            await session.wait_idle()
            await session.stop()
            return session, lost, old_context

        session, lost, old_context = asyncio.run(scenario())

        assert lost == ConnectionState.CLOSED
        assert any(s.message.startswith("Connection closed") for s in statuses)
        assert session.context is not old_context
        assert len(session.context.cache) == 100

    def test_undecodable_reply_releases_fetch_slot(self, server):
        statuses = []

        async def scenario():
            transport = NullRowsTransport(server)
            session = _session(transport, statuses)
            await session.start()
            await session.wait_idle()
            in_flight = session.context.fetcher.in_flight
            queries = sum(m["type"] == "query" for m in transport.sent)
            session.tick()
            await session.wait_idle()
            await session.stop()
            return session, transport, in_flight, queries

        session, transport, in_flight, queries = asyncio.run(scenario())

        assert in_flight is None
        assert queries == 1
        assert sum(m["type"] == "query" for m in transport.sent) == 2
        assert len(session.context.cache) == 0
        errors = [s.message for s in statuses if s.level == "error"]
        assert errors and "Undecodable row set" in errors[0]
        assert "null values in: x" in errors[0]

    def test_unexpected_decode_error_releases_fetch_slot(self, server):
        statuses = []

        async def scenario():
            session = _session(LoopbackTransport(server), statuses)
            with patch("viewer.session.decode_points", side_effect=RuntimeError("truncated stream")):
                await session.start()
                await session.wait_idle()
            in_flight = session.context.fetcher.in_flight
            await session.stop()
            return in_flight

        assert asyncio.run(scenario()) is None
        assert any(s.level == "error" and "truncated stream" in s.message for s in statuses)
