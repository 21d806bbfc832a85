"""Text layout for ground data - pure functions plus a sink that keeps the last good sample."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ground_data import GroundData


@dataclass
class DisplayLine:
    """One line of output with the colour it should be drawn in."""
    text: str
    color: Tuple[int, int, int] = (200, 200, 200)


def get_temperature_color(temp_c: float) -> Tuple[int, int, int]:
    """
    Get RGB color for temperature using a simple gradient.

    Cold (< 0°C) = blue
    Cool (0-15°C) = cyan
    Mild (15-25°C) = green/yellow
    Warm (25-35°C) = yellow/orange
    Hot (> 35°C) = red

    Args:
        temp_c: Temperature in Celsius

    Returns:
        Tuple of (r, g, b) values (0-255)
    """
    if temp_c < 0:
        return (0, 0, 255)
    elif temp_c < 15:
        ratio = temp_c / 15.0
        return (0, int(255 * ratio), 255)
    elif temp_c < 25:
        ratio = (temp_c - 15) / 10.0
        return (int(255 * ratio), 255, int(255 * (1 - ratio)))
    elif temp_c < 35:
        ratio = (temp_c - 25) / 10.0
        return (255, int(255 * (1 - ratio * 0.5)), 0)
    else:
        ratio = min((temp_c - 35) / 10.0, 1.0)
        return (255, int(255 * (1 - ratio)), 0)


def get_condition_text(data: GroundData) -> str:
    """
    Get short text representation of the weather condition.

    Args:
        data: Ground data sample

    Returns:
        Short condition string (e.g., "Cloudy", "Rain", "Clear")
    """
    description = data.conditions.description.strip()
    if not description:
        return "Unknown"

    # Map common OpenWeather descriptions to short display strings
    condition_map = {
        "clear": "Clear",
        "clouds": "Cloudy",
        "rain": "Rain",
        "drizzle": "Drizzle",
        "thunderstorm": "Storm",
        "snow": "Snow",
        "mist": "Mist",
        "fog": "Fog",
        "haze": "Haze",
    }
    words = description.lower().split()
    for word in reversed(words):
        if word in condition_map:
            return condition_map[word]
    return description.capitalize()


def format_time_label(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """Format a timestamp relative to now, e.g. "Now 3:00 PM" or "+5h 8:00 PM"."""
    current = now or datetime.now(timestamp.tzinfo)
    diff_hours = round((timestamp - current).total_seconds() / 3600)
    clock = timestamp.strftime("%I:%M %p").lstrip("0")
    if diff_hours == 0:
        return f"Now {clock}"
    return f"{diff_hours:+d}h {clock}"


def format_ground_lines(data: GroundData, now: Optional[datetime] = None) -> List[DisplayLine]:
    """
    Lay out a sample as display lines.

    Interpolated samples are prefixed with "~" so they read as estimates.

    Args:
        data: Valid ground data sample
        now: Reference time for the relative time label

    Returns:
        Temperature, condition, humidity/pressure and time lines
    """
    metrics = data.metrics
    temp = metrics.temperature.current
    marker = "~" if data.interpolated else ""

    temp_text = f"{marker}{temp:.1f}°"
    if metrics.temperature.feels_like is not None:
        temp_text += f" (feels {metrics.temperature.feels_like:.1f}°)"

    pressure = metrics.pressure
    info_text = f"Hum {int(metrics.humidity)}%  {pressure.current:.0f}hPa {pressure.trend.value}"

    return [
        DisplayLine(temp_text, get_temperature_color(temp)),
        DisplayLine(get_condition_text(data), (220, 220, 220)),
        DisplayLine(info_text, (180, 180, 180)),
        DisplayLine(format_time_label(data.timestamp, now), (180, 180, 180)),
    ]


class GroundDisplay:
    """
    Sink that shows ground data and never blanks.

    On errors the last good sample stays on screen and `stale` is set
    until the next successful update.
    """

    def __init__(self, output: Callable[[str], None] = print):
        self._output = output
        self.last_good: Optional[GroundData] = None
        self.lines: List[DisplayLine] = []
        self.stale = False
        self.status: Optional[str] = None

    def show(self, data: GroundData) -> None:
        if not data.is_valid():
            # Never shown as authoritative
            self.show_error("Incomplete data")
            return
        self.last_good = data
        self.stale = False
        self.status = None
        self.lines = format_ground_lines(data)
        self._write()

    def show_error(self, message: str) -> None:
        logging.warning(f"Display keeping last known value: {message}")
        self.stale = True
        self.status = message
        self._write()

    def _write(self) -> None:
        for line in self.lines:
            self._output(line.text)
        if self.stale:
            self._output(f"! {self.status or 'Data unavailable'}")
