"""
WebSocket session manager for the pointstream server.

Each websocket connection gets its own ServerSession (selection counter,
bookkeeping). All sessions share one read-only query backend and one
selection store. Messages of a session are handled strictly one at a time:
the endpoint awaits ``handle_message`` before receiving the next frame, so
persisting a selection needs no locking beyond that sequencing.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket

from backend.query_backend import DuckDBBackend, QueryError
from backend.selections import SelectionStore
from shared.codec import encode_table, to_base64
from shared.logger import get_logger

from .messages import (
    ArrowDataMessage,
    Envelope,
    ErrorMessage,
    MessageType,
    MetadataMessage,
    MetadataRequest,
    PingRequest,
    PongMessage,
    ProtocolError,
    QueryRequest,
    SaveSelectionRequest,
    SelectionSavedMessage,
    parse_client_message,
)

logger = get_logger(__name__)


@dataclass
class ServerSession:
    """Per-connection state."""

    session_id: str
    client_id: Optional[str] = None
    connected_at: str = field(default_factory=lambda: datetime.now().isoformat())
    selection_counter: int = 1
    messages_handled: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "client_id": self.client_id,
            "connected_at": self.connected_at,
            "selection_counter": self.selection_counter,
            "messages_handled": self.messages_handled,
        }


class WebSocketManager:
    """
    Manages streaming sessions over WebSocket connections.

    Args:
        backend: Query backend serving the dataset (may be attached later).
        store: Selection store shared by all sessions.
        max_limit: Upper bound on rows returned per query.
        max_exclude_ids: Upper bound on the size of a query's exclusion list.
    """

    def __init__(
        self,
        backend: Optional[DuckDBBackend] = None,
        store: Optional[SelectionStore] = None,
        max_limit: int = 1_000_000,
        max_exclude_ids: int = 50_000,
    ):
        self.backend = backend
        self.store = store if store is not None else SelectionStore()
        self.max_limit = max_limit
        self.max_exclude_ids = max_exclude_ids

        self._sessions: Dict[WebSocket, ServerSession] = {}
        self._lock = asyncio.Lock()

        self._handlers: Dict[MessageType, Callable[[ServerSession, Any], Awaitable[Envelope]]] = {
            MessageType.METADATA: self._handle_metadata,
            MessageType.QUERY: self._handle_query,
            MessageType.SAVE_SELECTION: self._handle_save_selection,
            MessageType.PING: self._handle_ping,
        }

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> ServerSession:
        """
        Accept a new WebSocket connection and open its session.

        Args:
            websocket: The WebSocket connection
            client_id: Optional client identifier
        """
        await websocket.accept()
        session = ServerSession(session_id=uuid.uuid4().hex[:12], client_id=client_id)

        async with self._lock:
            self._sessions[websocket] = session

        logger.info("Session %s opened (client_id=%s)", session.session_id, client_id)
        return session

    async def disconnect(self, websocket: WebSocket) -> None:
        """Drop the session of a closed connection."""
        async with self._lock:
            session = self._sessions.pop(websocket, None)
        if session:
            logger.info(
                "Session %s closed after %d messages",
                session.session_id,
                session.messages_handled,
            )

    def get_session(self, websocket: WebSocket) -> Optional[ServerSession]:
        return self._sessions.get(websocket)

    def get_connection_count(self) -> int:
        """Get the total number of active connections."""
        return len(self._sessions)

    async def send_to_connection(self, websocket: WebSocket, message: Envelope) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await websocket.send_text(message.to_json())
            return True
        except Exception as e:
            logger.warning("Error sending WebSocket message: %s", e)
            await self.disconnect(websocket)
            return False

    async def handle_message(self, websocket: WebSocket, message_text: str) -> Optional[Envelope]:
        """
        Handle an incoming frame and return the response to send back.

        Protocol and backend errors are turned into ``error`` envelopes; the
        session always survives them.
        """
        session = self._sessions.get(websocket)
        if session is None:
            # Frames from a connection that was never registered via connect()
            session = ServerSession(session_id=uuid.uuid4().hex[:12])
            async with self._lock:
                self._sessions[websocket] = session

        try:
            message = parse_client_message(message_text)
        except ProtocolError as e:
            logger.warning("Session %s: dropping message: %s", session.session_id, e)
            return ErrorMessage(message=str(e), request_id=e.request_id)

        session.messages_handled += 1
        handler = self._handlers[MessageType(message.type)]
        try:
            return await handler(session, message)
        except QueryError as e:
            logger.error("Session %s: %s failed: %s", session.session_id, message.type, e)
            return ErrorMessage(message=str(e), request_id=message.request_id)

    def _require_backend(self) -> DuckDBBackend:
        if self.backend is None:
            raise QueryError("No dataset loaded")
        return self.backend

    async def _handle_metadata(self, session: ServerSession, message: MetadataRequest) -> Envelope:
        backend = self._require_backend()
        bounds = await asyncio.to_thread(backend.bounds)
        return MetadataMessage.from_bounds(bounds, request_id=message.request_id)

    async def _handle_query(self, session: ServerSession, message: QueryRequest) -> Envelope:
        backend = self._require_backend()
        query = message.query

        if query.exclude_ids and len(query.exclude_ids) > self.max_exclude_ids:
            return ErrorMessage(
                message=(
                    f"Exclusion list too large: {len(query.exclude_ids)} ids "
                    f"(maximum {self.max_exclude_ids})"
                ),
                request_id=message.request_id,
            )

        limit = min(query.limit, self.max_limit)
        table = await asyncio.to_thread(backend.sample, query.rect.to_rect(), query.exclude_ids, limit)
        payload = encode_table(table)
        logger.debug(
            "Session %s: query %s -> %d rows (%d bytes)",
            session.session_id,
            message.request_id,
            table.num_rows,
            len(payload),
        )
        return ArrowDataMessage(
            data=to_base64(payload),
            rows=table.num_rows,
            request_id=message.request_id,
        )

    async def _handle_save_selection(
        self,
        session: ServerSession,
        message: SaveSelectionRequest,
    ) -> Envelope:
        name = message.name or f"Selection{session.selection_counter}"

        if not message.data:
            return ErrorMessage(
                message="No points found in selection",
                name=name,
                request_id=message.request_id,
            )

        try:
            backend = self._require_backend()
            rows = await asyncio.to_thread(backend.lookup, message.ids)
        except QueryError as e:
            logger.error("Session %s: error processing selection '%s': %s", session.session_id, name, e)
            return ErrorMessage(
                message=f"Error processing selection: {e}",
                name=name,
                request_id=message.request_id,
            )

        if rows.empty:
            return ErrorMessage(
                message="None of the selected points exist in the dataset",
                name=name,
                request_id=message.request_id,
            )

        self.store.save(name, rows, session_id=session.session_id)
        session.selection_counter += 1

        return SelectionSavedMessage(
            name=name,
            count=len(rows),
            next_counter=session.selection_counter,
            request_id=message.request_id,
        )

    async def _handle_ping(self, session: ServerSession, message: PingRequest) -> Envelope:
        return PongMessage(request_id=message.request_id)
