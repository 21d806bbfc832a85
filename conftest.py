"""Shared pytest fixtures."""
import pytest
from datetime import datetime, timezone

from ground_data import (
    Conditions,
    DEFAULT_LOCATION,
    GroundData,
    Metrics,
    Pressure,
    PressureTrend,
    Temperature,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_sample():
    """Factory for valid ground data samples."""
    def _make(
        timestamp: datetime = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        temp: float = 20.0,
        feels_like: float = 19.0,
        humidity: float = 60.0,
        pressure: float = 1010.0,
        description: str = "clear sky",
        trend: PressureTrend = PressureTrend.STEADY,
    ) -> GroundData:
        return GroundData(
            timestamp=timestamp,
            location=DEFAULT_LOCATION,
            metrics=Metrics(
                temperature=Temperature(current=temp, feels_like=feels_like, min_24h=temp - 3, max_24h=temp + 3),
                humidity=humidity,
                pressure=Pressure(current=pressure, sea_level=pressure, trend=trend),
            ),
            conditions=Conditions(description=description, icon="01d"),
        )
    return _make
