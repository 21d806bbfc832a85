"""Timeline gesture engine - maps drag, wheel and keyboard input to timestamps."""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from events import (
    DRAG_END,
    DRAG_START,
    SOURCE_AUTO,
    SOURCE_USER,
    TIME_CHANGE,
    DragEvent,
    EventEmitter,
    TimeChangeEvent,
)
from ground_data import TimestampLike, to_utc
from scheduler import Debouncer, Scheduler, TimerHandle

# Key name -> hours moved per press
KEY_STEPS = {
    "ArrowLeft": -0.25,
    "ArrowRight": 0.25,
    "PageUp": -1.0,
    "PageDown": 1.0,
}


class TimelineState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    SNAPPING = "snapping"


def hour_width_for_viewport(viewport_width: float) -> float:
    """
    Get pixels per hour for a viewport width.

    Narrower viewports never get wider hours.
    """
    if viewport_width <= 480:
        return 50.0
    elif viewport_width <= 768:
        return 60.0
    else:
        return 80.0


def ease_out_cubic(t: float) -> float:
    return 1 - (1 - t) ** 3


class _Animation:
    def __init__(self, start: float, target: float, started_at: float, source: str):
        self.start = start
        self.target = target
        self.started_at = started_at
        self.source = source
        self.handle: Optional[TimerHandle] = None


class Timeline:
    """
    Horizontal scroll surface whose offset represents a point in time.

    The displayed timestamp is always
    anchor + (scroll_offset / hour_width - center_hour) hours, with the
    anchor fixed when the timeline is created. Dragging emits debounced
    time-change notifications; releasing, wheel settling and keyboard steps
    animate to their target and emit one immediate notification when done.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        anchor: Optional[TimestampLike] = None,
        viewport_width: float = 1024,
        total_hours: int = 48,
        center_hour: float = 24,
        snap_to_hour: bool = True,
        debounce_delay: float = 0.2,
        snap_duration: float = 0.3,
        wheel_settle_delay: float = 0.15,
        wheel_multiplier: float = 2.0,
        frame_interval: float = 1 / 60,
        immediate_updates: bool = False,
    ):
        """
        Initialize the timeline centred on the anchor.

        Args:
            scheduler: Timer source for debouncing and animation frames
            anchor: Reference instant shown at the centre (default: now)
            viewport_width: Width of the view in pixels, picks hour_width
            total_hours: Hours covered by the track (for display)
            center_hour: Hour index of the anchor on the track
            snap_to_hour: Snap to hour boundaries on release / wheel settle
            debounce_delay: Quiet time before a drag notification fires
            snap_duration: Length of snap and keyboard animations
            wheel_settle_delay: Quiet time after wheel input before snapping
            wheel_multiplier: Pixels moved per wheel delta unit
            frame_interval: Seconds between animation frames
            immediate_updates: Emit drag notifications without debouncing
        """
        self.scheduler = scheduler
        self.anchor = to_utc(anchor) if anchor is not None else datetime.now(timezone.utc)
        self.total_hours = total_hours
        self.center_hour = center_hour
        self.snap_to_hour = snap_to_hour
        self.snap_duration = snap_duration
        self.wheel_settle_delay = wheel_settle_delay
        self.wheel_multiplier = wheel_multiplier
        self.frame_interval = frame_interval
        self.immediate_updates = immediate_updates

        self.viewport_width = viewport_width
        self.hour_width = hour_width_for_viewport(viewport_width)
        self.scroll_offset = self.center_hour * self.hour_width
        self.state = TimelineState.IDLE

        self.events = EventEmitter()
        self._debouncer = Debouncer(scheduler, debounce_delay, self._emit_debounced)
        self._last_pointer_x = 0.0
        self._wheel_handle: Optional[TimerHandle] = None
        self._animation: Optional[_Animation] = None

    @property
    def is_dragging(self) -> bool:
        return self.state is TimelineState.DRAGGING

    @property
    def timestamp(self) -> datetime:
        """Timestamp represented by the current scroll offset."""
        return self.timestamp_for_offset(self.scroll_offset)

    def timestamp_for_offset(self, offset: float) -> datetime:
        hours = offset / self.hour_width - self.center_hour
        return self.anchor + timedelta(hours=hours)

    def offset_for_timestamp(self, timestamp: TimestampLike) -> float:
        hours = (to_utc(timestamp) - self.anchor).total_seconds() / 3600
        return (hours + self.center_hour) * self.hour_width

    def nearest_hour_offset(self, offset: Optional[float] = None) -> float:
        """Get the offset of the hour boundary closest to offset."""
        offset = self.scroll_offset if offset is None else offset
        return round(offset / self.hour_width) * self.hour_width

    # Pointer / touch input

    def pointer_down(self, x: float) -> None:
        """Start a drag at screen position x."""
        self._cancel_animation()
        self._cancel_wheel_timer()
        self._last_pointer_x = x
        self.state = TimelineState.DRAGGING
        logging.debug(f"Drag start at x={x}, offset={self.scroll_offset:.1f}")
        self.events.emit(DRAG_START, DragEvent(timestamp=self.timestamp))

    def pointer_move(self, x: float) -> None:
        """Move the drag to screen position x. Ignored when not dragging."""
        if self.state is not TimelineState.DRAGGING:
            return
        delta = x - self._last_pointer_x
        self._last_pointer_x = x
        self.scroll_offset += delta
        if self.immediate_updates:
            self._emit_time_change(SOURCE_USER, immediate=True)
        else:
            self._debouncer.call(SOURCE_USER)

    def pointer_up(self) -> None:
        """Release the drag and snap to the nearest hour."""
        if self.state is not TimelineState.DRAGGING:
            return
        self._debouncer.cancel()
        target = self.nearest_hour_offset() if self.snap_to_hour else self.scroll_offset
        logging.debug(f"Drag end at offset={self.scroll_offset:.1f}, snapping to {target:.1f}")
        self.events.emit(DRAG_END, DragEvent(timestamp=self.timestamp_for_offset(target)))
        self._animate_to(target, SOURCE_USER)

    touch_start = pointer_down
    touch_move = pointer_move
    touch_end = pointer_up

    # Wheel and keyboard input

    def wheel(self, delta_x: float) -> None:
        """
        Apply a wheel delta immediately; snap once the wheel goes quiet.

        Args:
            delta_x: Horizontal wheel delta (scrolls opposite to a drag)
        """
        if self.state is TimelineState.DRAGGING:
            return
        self._cancel_animation()
        self.scroll_offset -= delta_x * self.wheel_multiplier
        self._debouncer.call(SOURCE_USER)
        self._cancel_wheel_timer()
        self._wheel_handle = self.scheduler.call_later(self.wheel_settle_delay, self._wheel_settled)

    def _wheel_settled(self) -> None:
        self._wheel_handle = None
        self._debouncer.cancel()
        target = self.nearest_hour_offset() if self.snap_to_hour else self.scroll_offset
        self._animate_to(target, SOURCE_USER)

    def key_down(self, key: str) -> bool:
        """
        Handle a keyboard key.

        Arrow keys move 15 minutes, Page Up/Down one hour and Home returns
        to the anchor.

        Returns:
            True if the key was handled
        """
        if key == "Home":
            self.center_on_now(source=SOURCE_USER)
            return True
        hours = KEY_STEPS.get(key)
        if hours is None:
            return False
        if self.state is TimelineState.DRAGGING:
            return True
        self.move_by_hours(hours, source=SOURCE_USER)
        return True

    # Programmatic navigation

    def move_by_hours(self, hours: float, source: str = SOURCE_AUTO) -> None:
        """Animate by a number of hours, continuing from an unfinished move."""
        base = self._animation.target if self._animation is not None else self.scroll_offset
        self._animate_to(base + hours * self.hour_width, source)

    def jump_to(self, timestamp: TimestampLike, source: str = SOURCE_AUTO) -> None:
        """Animate to an arbitrary timestamp (not snapped)."""
        self._animate_to(self.offset_for_timestamp(timestamp), source)

    def center_on_now(self, source: str = SOURCE_AUTO) -> None:
        """Reset to the anchor without animation and notify immediately."""
        self._cancel_animation()
        self._cancel_wheel_timer()
        self.state = TimelineState.IDLE
        self.scroll_offset = self.center_hour * self.hour_width
        self._emit_time_change(source, immediate=True)

    def resize(self, viewport_width: float) -> None:
        """Recompute hour_width for a new viewport, keeping the timestamp."""
        current = self.timestamp
        animation = self._animation
        target_ts = self.timestamp_for_offset(animation.target) if animation is not None else None

        self.viewport_width = viewport_width
        self.hour_width = hour_width_for_viewport(viewport_width)
        self.scroll_offset = self.offset_for_timestamp(current)
        if animation is not None:
            self._cancel_animation()
            self._animate_to(self.offset_for_timestamp(target_ts), animation.source)

    def destroy(self) -> None:
        """Cancel every pending timer and drop all listeners."""
        self._debouncer.cancel()
        self._cancel_wheel_timer()
        self._cancel_animation()
        self.state = TimelineState.IDLE
        self.events.clear()

    # Animation

    def _animate_to(self, target: float, source: str) -> None:
        self._cancel_animation()
        self._debouncer.cancel()
        if self.snap_duration <= 0 or abs(target - self.scroll_offset) < 1e-9:
            self.scroll_offset = target
            self.state = TimelineState.IDLE
            self._emit_time_change(source, immediate=True)
            return

        self.state = TimelineState.SNAPPING
        self._animation = _Animation(self.scroll_offset, target, self.scheduler.time(), source)
        self._animation.handle = self.scheduler.call_later(self.frame_interval, self._animation_frame)

    def _animation_frame(self) -> None:
        animation = self._animation
        if animation is None:
            return
        elapsed = self.scheduler.time() - animation.started_at
        progress = min(elapsed / self.snap_duration, 1.0)

        if progress >= 1.0:
            self.scroll_offset = animation.target
            self._animation = None
            self.state = TimelineState.IDLE
            self._emit_time_change(animation.source, immediate=True)
            return

        distance = animation.target - animation.start
        self.scroll_offset = animation.start + distance * ease_out_cubic(progress)
        animation.handle = self.scheduler.call_later(self.frame_interval, self._animation_frame)

    def _cancel_animation(self) -> None:
        if self._animation is None:
            return
        if self._animation.handle is not None:
            self._animation.handle.cancel()
        self._animation = None
        if self.state is TimelineState.SNAPPING:
            self.state = TimelineState.IDLE

    def _cancel_wheel_timer(self) -> None:
        if self._wheel_handle is not None:
            self._wheel_handle.cancel()
            self._wheel_handle = None

    # Notifications

    def _emit_debounced(self, source: str) -> None:
        self._emit_time_change(source, immediate=False)

    def _emit_time_change(self, source: str, immediate: bool) -> None:
        if immediate:
            self._debouncer.cancel()
        event = TimeChangeEvent(timestamp=self.timestamp, source=source, immediate=immediate)
        logging.debug(
            f"Time change: {event.timestamp.isoformat()} (source={source}, immediate={immediate})"
        )
        self.events.emit(TIME_CHANGE, event)
