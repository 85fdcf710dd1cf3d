"""
Async runner for one viewer session.

All state changes go through one queue of typed events consumed by a single
dispatcher task. Network round trips run as separate tasks and post their
outcome back to the queue, so a slow reply never blocks gestures or frames.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional, Set

from channel.messages import (
    ArrowDataMessage,
    ErrorMessage,
    MetadataMessage,
    MetadataRequest,
    SelectionSavedMessage,
    ServerMessage,
)
from shared.codec import CodecError, decode_points, from_base64
from shared.logger import get_logger

from .config import ViewerConfig
from .connection import Connection, ConnectionClosed, RequestTimeout, TransportFactory
from .dispatcher import SessionContext
from .events import (
    AdaptiveToggled,
    BudgetSet,
    Command,
    ConnectionLost,
    Event,
    FetchFailed,
    FetchSucceeded,
    FrameRendered,
    MetadataReceived,
    Pan,
    Render,
    ResetView,
    Resize,
    SelectionFailed,
    SelectionRequested,
    SelectionSaved,
    SendFetch,
    SendSelection,
    Status,
    TimerTick,
    Zoom,
)
from .fetch import FetchRequest
from .selection import Selection

logger = get_logger(__name__)


class ViewerSession:
    """Connects to a pointstream server and keeps the point cache in sync
    with the viewport.

    Args:
        url: Websocket endpoint, e.g. ``ws://127.0.0.1:8000/ws``.
        config: Viewer tunables.
        width: Screen width in pixels.
        height: Screen height in pixels.
        on_render: Called with every ``Render`` command.
        on_status: Called with every ``Status`` command.
        transport_factory: Replaces the websocket transport (tests).
        tick_interval: Seconds between timer ticks; ``None`` disables the timer.
    """

    def __init__(
        self,
        url: str,
        config: Optional[ViewerConfig] = None,
        width: float = 800,
        height: float = 600,
        on_render: Optional[Callable[[Render], Any]] = None,
        on_status: Optional[Callable[[Status], Any]] = None,
        transport_factory: Optional[TransportFactory] = None,
        tick_interval: Optional[float] = 0.5,
    ):
        self.config = config or ViewerConfig()
        self.width = width
        self.height = height
        self.on_render = on_render
        self.on_status = on_status
        self.tick_interval = tick_interval
        self.connection = Connection(
            url,
            connect_timeout=self.config.connect_timeout,
            request_timeout=self.config.request_timeout,
            transport_factory=transport_factory,
        )
        self.context = SessionContext(self.config, width, height)
        self._events: Optional[asyncio.Queue] = None
        self._tasks: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()

    # ============= Lifecycle =============

    async def start(self) -> None:
        """Open the channel and request the dataset bounds.

        Starting again after the channel closed begins with a fresh context.
        """
        if self.connection.is_open:
            return
        if self._events is not None:
            await self.stop()
            self.context = SessionContext(self.config, self.width, self.height)

        self._events = asyncio.Queue()
        try:
            await self.connection.open()
        except ConnectionClosed as e:
            await self._emit_status(Status(str(e), level="error"))
            raise

        self._spawn_background(self._run_dispatcher())
        self._spawn_background(self._run_listener())
        if self.tick_interval:
            self._spawn_background(self._run_timer(self.tick_interval))
        self._spawn(self._load_metadata())

    async def stop(self) -> None:
        await self.connection.close()
        for task in list(self._tasks | self._background):
            task.cancel()
        await asyncio.gather(*self._tasks, *self._background, return_exceptions=True)
        self._tasks.clear()
        self._background.clear()

    async def __aenter__(self) -> "ViewerSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def wait_idle(self) -> None:
        """Wait until no round trip is running and every event was handled."""
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            if self._events is not None:
                await self._events.join()
            if not self._tasks:
                return

    # ============= Inputs =============

    def post(self, event: Event) -> None:
        if self._events is None:
            raise RuntimeError("Session is not started")
        self._events.put_nowait(event)

    def pan(self, dx: float, dy: float) -> None:
        self.post(Pan(dx, dy))

    def zoom(self, factor: float, cx: Optional[float] = None, cy: Optional[float] = None) -> None:
        self.post(Zoom(factor, cx, cy))

    def reset_view(self) -> None:
        self.post(ResetView())

    def resize(self, width: float, height: float) -> None:
        self.width, self.height = width, height
        self.post(Resize(width, height))

    def frame_rendered(self, timestamp_ms: float) -> None:
        self.post(FrameRendered(timestamp_ms))

    def tick(self) -> None:
        self.post(TimerTick())

    def set_budget(self, budget: int) -> None:
        self.post(BudgetSet(budget))

    def set_adaptive(self, enabled: bool) -> None:
        self.post(AdaptiveToggled(enabled))

    def select(
        self,
        corner1: tuple[float, float],
        corner2: tuple[float, float],
        name: Optional[str] = None,
    ) -> None:
        self.post(SelectionRequested(corner1, corner2, name))

    # ============= Loops =============

    async def _run_dispatcher(self) -> None:
        while True:
            event = await self._events.get()
            try:
                commands = self.context.dispatch(event)
                for command in commands:
                    await self._execute(command)
            except Exception:
                logger.exception("Error handling %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def _run_listener(self) -> None:
        await self.connection.listen(self._on_unsolicited)
        self.post(ConnectionLost("server closed the channel"))

    async def _run_timer(self, interval: float) -> None:
        while self.connection.is_open:
            await asyncio.sleep(interval)
            self.post(TimerTick())

    def _on_unsolicited(self, message: ServerMessage) -> None:
        if isinstance(message, MetadataMessage):
            self.post(MetadataReceived(message.to_bounds()))
        elif isinstance(message, ErrorMessage):
            logger.warning("Server error: %s", message.message)
        else:
            logger.debug("Discarding unmatched %s message (request %s)", message.type, message.request_id)

    # ============= Commands =============

    async def _execute(self, command: Command) -> None:
        if isinstance(command, SendFetch):
            self._spawn(self._fetch(command.request))
        elif isinstance(command, SendSelection):
            self._spawn(self._save_selection(command.selection, command.request_id))
        elif isinstance(command, Render):
            await self._invoke(self.on_render, command)
        elif isinstance(command, Status):
            await self._emit_status(command)

    async def _emit_status(self, status: Status) -> None:
        if status.level == "error":
            logger.error(status.message)
        else:
            logger.info(status.message)
        await self._invoke(self.on_status, status)

    @staticmethod
    async def _invoke(callback: Optional[Callable[..., Any]], *args) -> None:
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _spawn_background(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ============= Round trips =============

    async def _load_metadata(self) -> None:
        request = MetadataRequest(request_id=self.context.next_request_id())
        try:
            reply = await self.connection.request(request)
        except (RequestTimeout, ConnectionClosed) as e:
            await self._emit_status(Status(f"Could not load dataset bounds: {e}", level="error"))
            return

        if isinstance(reply, MetadataMessage):
            self.post(MetadataReceived(reply.to_bounds()))
        elif isinstance(reply, ErrorMessage):
            await self._emit_status(Status(f"Could not load dataset bounds: {reply.message}", level="error"))

    async def _fetch(self, request: FetchRequest) -> None:
        try:
            reply = await self.connection.request(request.to_message())
        except (RequestTimeout, ConnectionClosed) as e:
            self.post(FetchFailed(request.request_id, str(e)))
            return

        if isinstance(reply, ArrowDataMessage):
            try:
                points = decode_points(from_base64(reply.data))
            except CodecError as e:
                self.post(FetchFailed(request.request_id, f"Undecodable row set: {e}"))
                return
            except Exception as e:
                # The in-flight slot must be released whatever went wrong
                logger.exception("Failed to decode reply to request %d", request.request_id)
                self.post(FetchFailed(request.request_id, f"Undecodable row set: {e}"))
                return
            self.post(FetchSucceeded(request.request_id, points))
        elif isinstance(reply, ErrorMessage):
            self.post(FetchFailed(request.request_id, reply.message))
        else:
            self.post(FetchFailed(request.request_id, f"Unexpected {reply.type} reply"))

    async def _save_selection(self, selection: Selection, request_id: int) -> None:
        try:
            reply = await self.connection.request(selection.to_message(request_id))
        except (RequestTimeout, ConnectionClosed) as e:
            self.post(SelectionFailed(selection.name, str(e)))
            return

        if isinstance(reply, SelectionSavedMessage):
            self.post(SelectionSaved(reply.name, reply.count, reply.next_counter))
        elif isinstance(reply, ErrorMessage):
            self.post(SelectionFailed(reply.name or selection.name, reply.message))
        else:
            self.post(SelectionFailed(selection.name, f"Unexpected {reply.type} reply"))
