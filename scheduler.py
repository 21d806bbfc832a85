"""Timer abstraction - allows swapping the event loop with a manual clock in tests."""
import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle(ABC):
    """Handle returned by call_later; cancelling it stops the callback."""

    @abstractmethod
    def cancel(self) -> None:
        pass


class Scheduler(ABC):
    """Abstract scheduler used by the timeline for debouncing and animation."""

    @abstractmethod
    def time(self) -> float:
        """Get the current scheduler time in seconds (monotonic)."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """
        Run callback(*args) after delay seconds.

        Args:
            delay: Seconds to wait (negative values are treated as 0)
            callback: Function to call
            *args: Positional arguments for the callback

        Returns:
            Handle that can cancel the pending call
        """
        pass


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize with an explicit loop, or use the running loop lazily.

        Args:
            loop: Event loop to schedule on (default: the running loop)
        """
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        # asyncio.TimerHandle already provides cancel()
        return self.loop.call_later(max(delay, 0.0), callback, *args)  # type: ignore[return-value]


class _FakeTimer(TimerHandle):
    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler(Scheduler):
    """
    Manually advanced scheduler for testing - no real time passes.

    Useful for unit tests of debouncing and animations without sleeping.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._counter = itertools.count()
        self._queue: List[Tuple[float, int, _FakeTimer]] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        timer = _FakeTimer(self._now + max(delay, 0.0), callback, args)
        heapq.heappush(self._queue, (timer.when, next(self._counter), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have not fired or been cancelled."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, firing every callback that becomes due.

        Callbacks scheduled while advancing also fire if they fall inside
        the window.

        Args:
            seconds: How far to move the clock

        Returns:
            Number of callbacks fired
        """
        deadline = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= deadline:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = when
            timer.callback(*timer.args)
            fired += 1
        self._now = deadline
        return fired


class Debouncer:
    """Delay a callback and coalesce bursts so only the last call fires."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[..., Any]):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self._handle: Optional[TimerHandle] = None
        self._args: Tuple[Any, ...] = ()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def call(self, *args: Any) -> None:
        """Schedule the callback, replacing any call still waiting."""
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._handle = self.scheduler.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        """Drop the waiting call. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logging.debug("Debounced call superseded")
        return True

    def _fire(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        self.callback(*args)
