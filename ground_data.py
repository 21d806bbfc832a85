"""Ground layer domain model - pure data structures independent of any API."""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

TimestampLike = Union[datetime, str, int, float]


class PressureTrend(str, Enum):
    """Direction the barometric pressure is moving."""
    RISING = "rising"
    FALLING = "falling"
    STEADY = "steady"


@dataclass
class Location:
    lat: float
    lon: float
    city: Optional[str] = None
    country: Optional[str] = None


@dataclass
class Temperature:
    current: Optional[float]
    feels_like: Optional[float] = None
    min_24h: Optional[float] = None
    max_24h: Optional[float] = None


@dataclass
class Pressure:
    current: Optional[float]
    sea_level: Optional[float] = None
    trend: PressureTrend = PressureTrend.STEADY


@dataclass
class Metrics:
    temperature: Optional[Temperature]
    humidity: Optional[float]  # percentage, 0-100
    pressure: Optional[Pressure]


@dataclass
class Conditions:
    description: str = ""  # e.g., "clear sky", "light rain"
    icon: str = ""  # OpenWeather icon code, e.g., "01d"


DEFAULT_LOCATION = Location(lat=40.7128, lon=-74.0060, city="New York", country="US")


def validate_location(lat: Any, lon: Any) -> bool:
    """
    Check that coordinates are real numbers inside the valid range.

    Args:
        lat: Latitude (-90 to 90)
        lon: Longitude (-180 to 180)

    Returns:
        True if both values are usable coordinates
    """
    for value in (lat, lon):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if math.isnan(value):
            return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def to_utc(value: TimestampLike) -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (a trailing "Z" is allowed) and UNIX timestamps in seconds.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"Not a timestamp: {value!r}")


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class GroundData:
    """One weather sample for a single instant and location."""
    timestamp: Optional[datetime]
    location: Optional[Location]
    metrics: Optional[Metrics]
    conditions: Conditions = field(default_factory=Conditions)
    # Set on samples blended from two neighbours rather than fetched
    interpolated: bool = False

    def is_valid(self) -> bool:
        """Check that every field needed for display is present."""
        if self.timestamp is None or self.location is None or self.metrics is None:
            return False
        if self.location.lat is None or self.location.lon is None:
            return False
        metrics = self.metrics
        if metrics.temperature is None or metrics.temperature.current is None:
            return False
        if metrics.humidity is None:
            return False
        if metrics.pressure is None or metrics.pressure.current is None:
            return False
        return True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroundData":
        """
        Build a sample from the camelCase wire representation.

        Sections that are missing become None so that is_valid() can
        report them instead of this method raising.

        Args:
            data: Plain dict with timestamp, location, metrics, conditions

        Returns:
            GroundData instance
        """
        raw_ts = data.get("timestamp")
        timestamp = to_utc(raw_ts) if raw_ts not in (None, "") else None

        location = None
        raw_location = data.get("location")
        if raw_location:
            location = Location(
                lat=raw_location.get("lat"),
                lon=raw_location.get("lon"),
                city=raw_location.get("city"),
                country=raw_location.get("country"),
            )

        metrics = None
        raw_metrics = data.get("metrics")
        if raw_metrics:
            temperature = None
            raw_temp = raw_metrics.get("temperature")
            if raw_temp:
                temperature = Temperature(
                    current=_optional_float(raw_temp.get("current")),
                    feels_like=_optional_float(raw_temp.get("feelsLike")),
                    min_24h=_optional_float(raw_temp.get("min24h")),
                    max_24h=_optional_float(raw_temp.get("max24h")),
                )
            pressure = None
            raw_pressure = raw_metrics.get("pressure")
            if raw_pressure:
                pressure = Pressure(
                    current=_optional_float(raw_pressure.get("current")),
                    sea_level=_optional_float(raw_pressure.get("seaLevel")),
                    trend=PressureTrend(raw_pressure.get("trend") or PressureTrend.STEADY.value),
                )
            metrics = Metrics(
                temperature=temperature,
                humidity=_optional_float(raw_metrics.get("humidity")),
                pressure=pressure,
            )

        raw_conditions = data.get("conditions") or {}
        conditions = Conditions(
            description=raw_conditions.get("description", ""),
            icon=raw_conditions.get("icon", ""),
        )

        return cls(
            timestamp=timestamp,
            location=location,
            metrics=metrics,
            conditions=conditions,
            interpolated=bool(data.get("interpolated", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the camelCase wire representation."""
        result: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "location": None,
            "metrics": None,
            "conditions": {
                "description": self.conditions.description,
                "icon": self.conditions.icon,
            },
            "interpolated": self.interpolated,
        }
        if self.location is not None:
            result["location"] = {
                "lat": self.location.lat,
                "lon": self.location.lon,
                "city": self.location.city,
                "country": self.location.country,
            }
        if self.metrics is not None:
            temp = self.metrics.temperature
            pressure = self.metrics.pressure
            result["metrics"] = {
                "temperature": None if temp is None else {
                    "current": temp.current,
                    "feelsLike": temp.feels_like,
                    "min24h": temp.min_24h,
                    "max24h": temp.max_24h,
                },
                "humidity": self.metrics.humidity,
                "pressure": None if pressure is None else {
                    "current": pressure.current,
                    "seaLevel": pressure.sea_level,
                    "trend": pressure.trend.value,
                },
            }
        return result
