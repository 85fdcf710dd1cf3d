"""
Tests for the viewer session context and its event dispatcher.

Run tests:
    pytest tests/test_dispatcher.py -v
"""

import pytest

from shared.types import Bounds, Point
from viewer.config import ViewerConfig
from viewer.dispatcher import SessionContext
from viewer.events import (
    AdaptiveToggled,
    BudgetSet,
    ConnectionLost,
    FetchFailed,
    FetchSucceeded,
    FrameRendered,
    MetadataReceived,
    Pan,
    Render,
    SelectionFailed,
    SelectionRequested,
    SelectionSaved,
    SendFetch,
    SendSelection,
    Status,
    TimerTick,
    Zoom,
)

BOUNDS = Bounds(0.0, 100.0, 0.0, 100.0, 10_000)


def _of_type(commands, kind):
    return [c for c in commands if isinstance(c, kind)]


@pytest.fixture
def context():
    return SessionContext(ViewerConfig(initial_budget=2_000), width=100, height=100)


@pytest.fixture
def loaded(context):
    """Context with bounds known and the first fetch answered."""
    commands = context.dispatch(MetadataReceived(BOUNDS))
    request = _of_type(commands, SendFetch)[0].request
    points = [Point(i, float(i % 100), float(i // 100), True) for i in range(1, 1_001)]
    context.dispatch(FetchSucceeded(request.request_id, points))
    return context


class TestDispatch:
    def test_nothing_is_fetched_before_metadata(self, context):
        assert context.dispatch(TimerTick()) == []

    def test_metadata_sets_domain_and_fetches(self, context):
        commands = context.dispatch(MetadataReceived(BOUNDS))

        assert context.viewport.has_domain
        assert _of_type(commands, Status)[0].message == "Dataset has 10000 points"
        fetches = _of_type(commands, SendFetch)
        assert len(fetches) == 1
        assert fetches[0].request.limit == 2_000

    def test_gesture_renders_and_marks_moved(self, loaded):
        commands = loaded.dispatch(Pan(5.0, 5.0))
        assert isinstance(commands[0], Render)
        assert loaded.budget.moved

    def test_single_flight_across_gestures(self, context):
        context.dispatch(MetadataReceived(BOUNDS))
        for _ in range(5):
            commands = context.dispatch(Zoom(1.1))
            assert _of_type(commands, SendFetch) == []

    def test_response_fills_cache_and_tops_up(self, context):
        first = _of_type(context.dispatch(MetadataReceived(BOUNDS)), SendFetch)[0].request
        points = [Point(i, 1.0, 1.0) for i in range(1, 1_001)]

        commands = context.dispatch(FetchSucceeded(first.request_id, points))

        assert len(context.cache) == 1_000
        assert isinstance(commands[0], Render)
        request = _of_type(commands, SendFetch)[0].request
        assert request.limit == 1_000
        assert len(request.exclude_ids) == 1_000

    def test_exhausted_region_stops_topping_up(self, loaded):
        request = loaded.fetcher.in_flight
        commands = loaded.dispatch(FetchSucceeded(request.request_id, []))
        assert _of_type(commands, SendFetch) == []
        assert loaded.fetcher.in_flight is None

    def test_tick_retries_after_exhausted_region(self, loaded):
        loaded.dispatch(FetchSucceeded(loaded.fetcher.in_flight.request_id, []))
        assert len(_of_type(loaded.dispatch(TimerTick()), SendFetch)) == 1

    def test_failed_fetch_reports_status(self, loaded):
        request = loaded.fetcher.in_flight
        commands = loaded.dispatch(FetchFailed(request.request_id, "Request 3 timed out"))
        assert commands[0].level == "error"
        assert loaded.fetcher.in_flight is None
        assert len(loaded.cache) == 1_000

    def test_stale_response_produces_nothing(self, loaded):
        assert loaded.dispatch(FetchSucceeded(999, [Point(5_000, 1.0, 1.0)])) == []
        assert 5_000 not in loaded.cache

    def test_slow_frames_shrink_budget(self, loaded):
        loaded.dispatch(Pan(1.0, 0.0))
        loaded.dispatch(FrameRendered(0.0))
        loaded.dispatch(FrameRendered(1_000.0))
        assert loaded.budget.budget == 1_800

    def test_budget_and_toggle(self, loaded):
        commands = loaded.dispatch(BudgetSet(500))
        assert loaded.budget.budget == 1_000
        assert _of_type(commands, Status)[0].message == "Budget set to 1000"

        loaded.dispatch(AdaptiveToggled(False))
        assert not loaded.budget.enabled

    def test_connection_lost_stops_fetching(self, loaded):
        commands = loaded.dispatch(ConnectionLost("gone"))
        assert commands[0].message == "Connection closed: gone"
        assert loaded.dispatch(TimerTick()) == []

    def test_unknown_event_is_ignored(self, context):
        assert context.dispatch(object()) == []


class TestSelectionEvents:
    def test_selection_sends_ids(self, loaded):
        commands = loaded.dispatch(SelectionRequested((0.0, 0.0), (100.0, 100.0)))
        send = _of_type(commands, SendSelection)[0]
        assert send.selection.name == "Selection1"
        assert len(send.selection) == 1_000

    def test_empty_selection_sends_nothing(self, loaded):
        # Screen top-left maps to the top of the data range, where no points are cached
        commands = loaded.dispatch(SelectionRequested((0.0, 0.0), (50.0, 50.0)))
        assert _of_type(commands, SendSelection) == []
        assert _of_type(commands, Status)[0].message == "No points in selection"

    def test_selection_before_metadata(self, context):
        commands = context.dispatch(SelectionRequested((0.0, 0.0), (10.0, 10.0)))
        assert commands == [Status("Dataset bounds not loaded yet", level="warning")]

    def test_saved_advances_counter(self, loaded):
        loaded.dispatch(SelectionSaved("Selection1", 1_000, next_counter=2))
        commands = loaded.dispatch(SelectionRequested((0.0, 0.0), (100.0, 100.0)))
        assert _of_type(commands, SendSelection)[0].selection.name == "Selection2"

    def test_failure_keeps_name(self, loaded):
        commands = loaded.dispatch(SelectionFailed("Selection1", "boom"))
        assert commands[0].message == "Failed to save selection 'Selection1': boom"
