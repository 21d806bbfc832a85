"""Tests for wiring timeline notifications to data fetching and display."""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from events import TIME_CHANGE
from ground_display import GroundDisplay
from ground_provider import NoDataAvailableError
from scheduler import FakeScheduler
from timeline import Timeline
from timeline_controller import TimelineController

ANCHOR = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeManager:
    """Stands in for DataManager with canned results per timestamp."""

    def __init__(self):
        self.results = {}
        self.gates = {}
        self.requests = []
        self.preloads = []

    async def get_data_for_time(self, timestamp, location=None):
        self.requests.append(timestamp)
        gate = self.gates.get(timestamp)
        if gate is not None:
            await gate.wait()
        result = self.results[timestamp]
        if isinstance(result, Exception):
            raise result
        return result

    def preload_adjacent(self, center, location=None, hour_radius=6):
        self.preloads.append((center, hour_radius))


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def timeline(scheduler):
    return Timeline(scheduler, anchor=ANCHOR)


@pytest.fixture
def manager():
    return FakeManager()


@pytest.fixture
def display():
    return GroundDisplay(output=lambda text: None)


@pytest.fixture
def controller(timeline, manager, display):
    return TimelineController(timeline, manager, display, preload_radius=3)


@pytest.mark.anyio
async def test_show_time_updates_display(controller, manager, display, make_sample):
    sample = make_sample(timestamp=ANCHOR)
    manager.results[ANCHOR] = sample

    assert await controller.show_time(ANCHOR) is sample
    assert display.last_good is sample


@pytest.mark.anyio
async def test_failure_keeps_last_good_value(controller, manager, display, make_sample):
    """Test that a failed hour leaves the previous sample on screen."""
    sample = make_sample(timestamp=ANCHOR)
    later = ANCHOR + timedelta(hours=1)
    manager.results[ANCHOR] = sample
    manager.results[later] = NoDataAvailableError("nothing cached")

    await controller.show_time(ANCHOR)
    assert await controller.show_time(later) is None

    assert display.last_good is sample
    assert display.stale is True
    assert display.status == "nothing cached"


@pytest.mark.anyio
async def test_superseded_result_is_dropped(controller, manager, display, make_sample):
    """Test that a slow response can't overwrite a newer one."""
    later = ANCHOR + timedelta(hours=1)
    slow = make_sample(timestamp=ANCHOR, temp=5.0)
    fast = make_sample(timestamp=later, temp=25.0)
    manager.results[ANCHOR] = slow
    manager.results[later] = fast
    manager.gates[ANCHOR] = asyncio.Event()

    first = asyncio.ensure_future(controller.show_time(ANCHOR))
    await asyncio.sleep(0)
    await controller.show_time(later)
    manager.gates[ANCHOR].set()

    assert await first is None
    assert display.last_good is fast


@pytest.mark.anyio
async def test_immediate_change_fetches_and_preloads(timeline, controller, manager, display, make_sample):
    sample = make_sample(timestamp=ANCHOR)
    manager.results[ANCHOR] = sample

    timeline.center_on_now()
    await controller.wait_idle()

    assert manager.requests == [ANCHOR]
    assert manager.preloads == [(ANCHOR, 3)]
    assert display.last_good is sample


@pytest.mark.anyio
async def test_debounced_change_fetches_without_preload(timeline, scheduler, controller, manager, make_sample):
    target = ANCHOR + timedelta(hours=1)
    manager.results[target] = make_sample(timestamp=target)

    timeline.pointer_down(0)
    timeline.pointer_move(80)
    scheduler.advance(0.5)
    await controller.wait_idle()

    assert manager.requests == [target]
    assert manager.preloads == []


@pytest.mark.anyio
async def test_debounced_changes_can_be_ignored(timeline, scheduler, manager, display):
    controller = TimelineController(timeline, manager, display, fetch_on_debounced=False)

    timeline.pointer_down(0)
    timeline.pointer_move(80)
    scheduler.advance(0.5)
    await controller.wait_idle()

    assert manager.requests == []


@pytest.mark.anyio
async def test_close_unsubscribes(timeline, controller):
    assert timeline.events.listener_count(TIME_CHANGE) == 1
    await controller.close()
    assert timeline.events.listener_count(TIME_CHANGE) == 0
