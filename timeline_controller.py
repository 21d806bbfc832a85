"""Wire timeline notifications to the data manager and the display."""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Set

from data_manager import DataManager
from events import TIME_CHANGE, TimeChangeEvent
from ground_data import GroundData, Location
from ground_display import GroundDisplay
from ground_provider import GroundDataError
from timeline import Timeline


class TimelineController:
    """
    Consumer of timeline time-change events.

    Every notification requests data for its timestamp; only the newest
    request is allowed to update the display, so a slow fetch for an hour
    the user already scrolled past cannot overwrite a newer one. Immediate
    notifications (drag release, keyboard) also preload adjacent hours.
    """

    def __init__(
        self,
        timeline: Timeline,
        manager: DataManager,
        display: GroundDisplay,
        location: Optional[Location] = None,
        preload_radius: int = 6,
        fetch_on_debounced: bool = True,
    ):
        self.timeline = timeline
        self.manager = manager
        self.display = display
        self.location = location
        self.preload_radius = preload_radius
        self.fetch_on_debounced = fetch_on_debounced

        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = timeline.events.on(TIME_CHANGE, self._on_time_change)

    def _on_time_change(self, event: TimeChangeEvent) -> None:
        if not event.immediate and not self.fetch_on_debounced:
            return
        task = asyncio.ensure_future(self.show_time(event.timestamp))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if event.immediate and self.preload_radius > 0:
            self.manager.preload_adjacent(event.timestamp, self.location, self.preload_radius)

    async def show_time(self, timestamp: datetime) -> Optional[GroundData]:
        """
        Fetch and display data for timestamp.

        Returns:
            The sample shown, or None if the request failed or was superseded
        """
        self._generation += 1
        generation = self._generation
        try:
            data = await self.manager.get_data_for_time(timestamp, self.location)
        except GroundDataError as e:
            logging.error(f"Ground data unavailable for {timestamp.isoformat()}: {e}")
            if generation == self._generation:
                self.display.show_error(str(e))
            return None

        if generation != self._generation:
            logging.debug(f"Dropping superseded result for {timestamp.isoformat()}")
            return None
        self.display.show(data)
        return data

    async def wait_idle(self) -> None:
        """Wait for every display update started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._unsubscribe()
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
