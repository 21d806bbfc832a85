"""Ground data provider abstraction - allows swapping different weather APIs."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List
from ground_data import GroundData, Location


class GroundDataError(Exception):
    """Base class for all ground data retrieval errors."""
    pass


class InvalidLocationError(GroundDataError):
    """Raised when coordinates are out of range. Never retried."""
    pass


class FetchFailureError(GroundDataError):
    """Exception raised when a provider fails (network, HTTP, parsing, rate limit)."""
    pass


class InvalidSampleError(FetchFailureError):
    """Raised when a fetched sample is missing required fields."""
    pass


class NoDataAvailableError(GroundDataError):
    """Raised when nothing was fetched and no cached fallback exists."""
    pass


class GroundDataProviderBase(ABC):
    """Abstract base class for ground data providers."""

    @abstractmethod
    async def fetch_ground_data(self, timestamp: datetime, location: Location) -> GroundData:
        """
        Fetch the sample closest to a point in time.

        Args:
            timestamp: Requested instant (aware UTC datetime)
            location: Where to fetch data for

        Returns:
            GroundData: Sample for the location

        Raises:
            InvalidLocationError: If the coordinates are out of range
            FetchFailureError: If the provider fails to fetch data
        """
        pass

    @abstractmethod
    async def fetch_timeline_batch(self, location: Location, hours_span: int) -> List[GroundData]:
        """
        Fetch a coarse-grained series of samples (current + forecast).

        Args:
            location: Where to fetch data for
            hours_span: How many hours the batch should cover

        Returns:
            List of samples sorted ascending by timestamp

        Raises:
            InvalidLocationError: If the coordinates are out of range
            FetchFailureError: If the provider fails to fetch data
        """
        pass
