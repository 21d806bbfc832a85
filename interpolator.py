"""Blend two ground data samples into one for an instant between them."""
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ground_data import GroundData, TimestampLike, to_utc


def lerp(start: float, end: float, t: float) -> float:
    """Linear interpolation between two values."""
    return start + (end - start) * t


def _lerp_optional(start: Optional[float], end: Optional[float], t: float) -> Optional[float]:
    # Missing on either side: keep the earlier sample's value
    if start is None or end is None:
        return start
    return lerp(start, end, t)


def progress_between(before: GroundData, after: GroundData, timestamp: TimestampLike) -> float:
    """
    Get the fractional position of timestamp between two samples.

    Returns:
        0.0 at before, 1.0 at after; 0.0 when both share a timestamp
    """
    span = (after.timestamp - before.timestamp).total_seconds()
    if span == 0:
        return 0.0
    return (to_utc(timestamp) - before.timestamp).total_seconds() / span


def interpolate(before: GroundData, after: GroundData, progress: float) -> GroundData:
    """
    Linearly interpolate the numeric metrics of two samples.

    Temperature (current, feels like), humidity and pressure are blended;
    humidity is rounded to a whole percentage. Conditions, trend, location
    and every other field come from `before` unchanged.

    Args:
        before: Earlier sample
        after: Later sample
        progress: Position between them, clamped to [0, 1]

    Returns:
        `before` at 0, `after` at 1, otherwise a new sample flagged as
        interpolated
    """
    if before is after or before.timestamp == after.timestamp:
        return before

    progress = max(0.0, min(1.0, progress))
    if progress == 0.0:
        return before
    if progress == 1.0:
        return after

    timestamp: Optional[datetime] = before.timestamp + (after.timestamp - before.timestamp) * progress

    metrics = before.metrics
    if before.metrics is not None and after.metrics is not None:
        start, end = before.metrics, after.metrics
        temperature = start.temperature
        if start.temperature is not None and end.temperature is not None:
            temperature = replace(
                start.temperature,
                current=_lerp_optional(start.temperature.current, end.temperature.current, progress),
                feels_like=_lerp_optional(start.temperature.feels_like, end.temperature.feels_like, progress),
            )

        humidity = start.humidity
        if start.humidity is not None and end.humidity is not None:
            humidity = float(round(lerp(start.humidity, end.humidity, progress)))

        pressure = start.pressure
        if start.pressure is not None and end.pressure is not None:
            pressure = replace(
                start.pressure,
                current=_lerp_optional(start.pressure.current, end.pressure.current, progress),
            )

        metrics = replace(start, temperature=temperature, humidity=humidity, pressure=pressure)

    return replace(before, timestamp=timestamp, metrics=metrics, interpolated=True)


def interpolate_at(before: GroundData, after: GroundData, timestamp: TimestampLike) -> GroundData:
    """Interpolate for a specific instant between two samples."""
    result = interpolate(before, after, progress_between(before, after, timestamp))
    if result.interpolated:
        result = replace(result, timestamp=to_utc(timestamp))
    return result
