"""Data manager with caching, request coalescing, retries and preloading."""
import asyncio
import logging
import math
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Pattern, Set, Union

from events import DATA_ERROR, DATA_LOADED, DATA_WARNING, DataEvent, EventEmitter
from ground_data import DEFAULT_LOCATION, GroundData, Location, TimestampLike, to_utc, validate_location
from ground_provider import (
    FetchFailureError,
    GroundDataProviderBase,
    InvalidLocationError,
    InvalidSampleError,
    NoDataAvailableError,
)
from interpolator import interpolate_at
from time_cache import CacheEntry, TimeCache, cache_key


class DataManager:
    """
    Single entry point for "give me ground data for time T".

    Wraps a provider with an hour-keyed cache, makes sure only one fetch
    per hour is in flight at any moment, retries failures with exponential
    backoff and falls back to stale or interpolated data when the provider
    keeps failing.
    """

    def __init__(
        self,
        provider: GroundDataProviderBase,
        cache: Optional[TimeCache] = None,
        location: Location = DEFAULT_LOCATION,
        cache_ttl_seconds: int = 300,  # 5 minutes default
        max_cache_size: int = 200,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        preload_concurrency: int = 3,
        preload_pause_seconds: float = 0.1,
        batch_hours: int = 24,
        current_window_seconds: int = 1800,
        past_horizon_hours: Optional[int] = None,
        future_horizon_hours: Optional[int] = None,
        cleanup_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the data manager.

        Args:
            provider: Ground data provider to fetch from
            cache: Cache to use (default: a new TimeCache sharing `clock`)
            location: Location used when callers don't pass one
            cache_ttl_seconds: How long fetched samples stay fresh
            max_cache_size: Entry limit for the default cache
            max_retries: Total fetch attempts before giving up
            retry_delay_seconds: First backoff delay, doubled on each retry
            preload_concurrency: Preload fetches running at the same time
            preload_pause_seconds: Pause between preload batches
            batch_hours: Minimum span requested from fetch_timeline_batch
            current_window_seconds: Targets this close to now use fetch_ground_data
            past_horizon_hours: How far back the provider can serve data (None: no limit)
            future_horizon_hours: How far ahead the provider can serve data (None: no limit)
            cleanup_interval_seconds: Period of the background sweep of expired
                entries (0 disables it)
            clock: Time source in seconds (injectable for tests)
        """
        self.provider = provider
        self.cache = cache or TimeCache(cache_ttl_seconds, max_cache_size, clock=clock)
        self.location = location
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.preload_concurrency = max(1, preload_concurrency)
        self.preload_pause_seconds = preload_pause_seconds
        self.batch_hours = batch_hours
        self.current_window_seconds = current_window_seconds
        self.past_horizon_hours = past_horizon_hours
        self.future_horizon_hours = future_horizon_hours
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock

        self.events = EventEmitter()
        self._pending: Dict[str, asyncio.Task] = {}
        self._preload_tasks: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

        self.request_count = 0
        self.cache_hit_count = 0
        self.error_count = 0
        self.fallback_count = 0

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _resolve_location(self, location: Optional[Location]) -> Location:
        location = location or self.location
        if not validate_location(location.lat, location.lon):
            raise InvalidLocationError(f"Invalid coordinates: lat={location.lat!r}, lon={location.lon!r}")
        return location

    def is_pending(self, timestamp: TimestampLike) -> bool:
        return cache_key(timestamp) in self._pending

    def within_horizon(self, timestamp: TimestampLike) -> bool:
        """Check whether the provider is expected to have data for timestamp."""
        hours_from_now = (to_utc(timestamp) - self._now()).total_seconds() / 3600
        if self.past_horizon_hours is not None and hours_from_now < -self.past_horizon_hours:
            return False
        if self.future_horizon_hours is not None and hours_from_now > self.future_horizon_hours:
            return False
        return True

    async def get_data_for_time(
        self,
        timestamp: TimestampLike,
        location: Optional[Location] = None,
        force_refresh: bool = False,
    ) -> GroundData:
        """
        Get ground data for a point in time, using cache if still fresh.

        When a fetch horizon is configured, targets beyond it are never sent
        to the provider: they are interpolated from cached neighbours or
        fail with NoDataAvailableError. Without one every miss is fetched.

        Args:
            timestamp: Requested instant
            location: Where to fetch for (default: the manager's location)
            force_refresh: Skip the cache lookup and fetch again

        Returns:
            GroundData: Cached, fetched, stale or interpolated sample

        Raises:
            InvalidLocationError: If the coordinates are out of range
            NoDataAvailableError: If every attempt failed and no fallback exists
        """
        target = to_utc(timestamp)
        location = self._resolve_location(location)
        key = cache_key(target)
        self.start_cleanup()
        # get() drops expired entries, keep one around for the fallback
        stale = self.cache.peek_entry(target)

        if not force_refresh:
            cached = self.cache.get(target)
            if cached is not None:
                self.cache_hit_count += 1
                logging.debug(f"Cache hit for {key}")
                return cached

        task = self._pending.get(key)
        if task is not None:
            logging.debug(f"Request already pending for {key}, joining it")
        else:
            task = asyncio.ensure_future(self._retrieve(target, location, key, stale))
            self._pending[key] = task
            task.add_done_callback(lambda _task, _key=key: self._forget_pending(_key, _task))

        # Shield so one cancelled caller doesn't cancel the fetch for the others
        return await asyncio.shield(task)

    def _forget_pending(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _retrieve(
        self,
        target: datetime,
        location: Location,
        key: str,
        stale: Optional[CacheEntry],
    ) -> GroundData:
        if not self.within_horizon(target):
            logging.info(f"{key} is outside the fetch horizon, using cached neighbours")
            interpolated = self._interpolate_from_cache(target)
            if interpolated is not None:
                return interpolated
            self.error_count += 1
            message = f"No data available for {key}: outside the fetch horizon and nothing cached around it"
            self.events.emit(DATA_ERROR, DataEvent(timestamp=target, key=key, reason=message))
            raise NoDataAvailableError(message)

        try:
            data = await self._fetch_with_retry(target, location, key)
        except InvalidLocationError:
            self.error_count += 1
            raise
        except FetchFailureError as e:
            self.error_count += 1
            self.events.emit(DATA_ERROR, DataEvent(timestamp=target, key=key, reason=str(e)))
            return self._fallback(target, key, stale, e)

        self.cache.set(target, data, self.cache_ttl_seconds)
        self.events.emit(DATA_LOADED, DataEvent(timestamp=target, key=key, data=data))
        return data

    def _fallback(
        self,
        target: datetime,
        key: str,
        stale: Optional[CacheEntry],
        error: FetchFailureError,
    ) -> GroundData:
        if stale is not None:
            self.fallback_count += 1
            logging.warning(f"All retries failed for {key}, using stale cache")
            # Still expired, so later lookups retry the fetch and can fall back again
            self.cache.restore(stale)
            self.events.emit(DATA_WARNING, DataEvent(timestamp=target, key=key, data=stale.data, reason=str(error)))
            return stale.data

        interpolated = self._interpolate_from_cache(target)
        if interpolated is not None:
            self.fallback_count += 1
            logging.warning(f"All retries failed for {key}, interpolating cached neighbours")
            self.events.emit(
                DATA_WARNING, DataEvent(timestamp=target, key=key, data=interpolated, reason=str(error))
            )
            return interpolated

        logging.error(f"Failed to fetch {key} after {self.max_retries} attempts, no cache available")
        raise NoDataAvailableError(
            f"Failed to fetch ground data for {key} after {self.max_retries} attempts: {error}"
        ) from error

    def _interpolate_from_cache(self, target: datetime) -> Optional[GroundData]:
        surrounding = self.cache.find_surrounding(target)
        if surrounding.exact is not None:
            return surrounding.exact
        if surrounding.has_bracket:
            return interpolate_at(surrounding.before, surrounding.after, target)
        return None

    async def _fetch_with_retry(self, target: datetime, location: Location, key: str) -> GroundData:
        last_error: Optional[FetchFailureError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                logging.debug(f"Ground data fetch attempt {attempt}/{self.max_retries} for {key}")
                data = await self._fetch(target, location)
                self.request_count += 1
                return data
            except InvalidLocationError:
                logging.error(f"Non-retryable error for {key}: invalid location")
                raise
            except FetchFailureError as e:
                last_error = e
                logging.warning(f"Ground data fetch attempt {attempt} for {key} failed: {e}")
            except Exception as e:
                # Any other provider failure counts as a fetch failure
                last_error = FetchFailureError(f"{type(e).__name__}: {e}")
                logging.warning(f"Ground data fetch attempt {attempt} for {key} failed: {e!r}")

            if attempt < self.max_retries:
                retry_delay = self.retry_delay_seconds * (2 ** (attempt - 1))
                logging.info(f"Retrying {key} in {retry_delay}s...")
                await asyncio.sleep(retry_delay)

        raise last_error

    async def _fetch(self, target: datetime, location: Location) -> GroundData:
        seconds_from_now = (target - self._now()).total_seconds()

        if abs(seconds_from_now) < self.current_window_seconds:
            logging.info(f"Fetching current ground data for {target.isoformat()}")
            return self._checked(await self.provider.fetch_ground_data(target, location), location)

        hours_span = max(self.batch_hours, math.ceil(abs(seconds_from_now) / 3600) + 1)
        logging.info(f"Fetching {hours_span}h timeline batch for {target.isoformat()}")
        batch = await self.provider.fetch_timeline_batch(location, hours_span)
        return self._closest_from_batch(batch, target, location)

    def _checked(self, data: GroundData, location: Location) -> GroundData:
        if data is None:
            raise InvalidSampleError("Provider returned no sample")
        if data.location is None:
            data = replace(data, location=location)
        if not data.is_valid():
            raise InvalidSampleError(f"Provider returned an incomplete sample: {data!r}")
        return data

    def _closest_from_batch(self, batch: List[GroundData], target: datetime, location: Location) -> GroundData:
        closest: Optional[GroundData] = None
        closest_distance = None
        for sample in batch or []:
            try:
                sample = self._checked(sample, location)
            except InvalidSampleError:
                logging.debug(f"Skipping invalid batch sample: {sample!r}")
                continue
            distance = abs((sample.timestamp - target).total_seconds())
            if closest_distance is None or distance < closest_distance:
                closest, closest_distance = sample, distance
            # Neighbouring hours come for free with the batch
            if cache_key(sample.timestamp) != cache_key(target) and not self.cache.has(sample.timestamp):
                self.cache.set(sample.timestamp, sample, self.cache_ttl_seconds)

        if closest is None:
            raise InvalidSampleError("No usable sample found in timeline batch")
        return closest

    def preload_adjacent(
        self,
        center: TimestampLike,
        location: Optional[Location] = None,
        hour_radius: int = 6,
    ) -> asyncio.Task:
        """
        Fetch hours around center in the background.

        Returns immediately. Hours already cached or in flight are skipped,
        fetches run in small batches, and failures are only logged.

        Args:
            center: Timestamp currently on screen
            location: Where to fetch for (default: the manager's location)
            hour_radius: Hours to preload on each side of center

        Returns:
            The background task (awaiting it never raises)
        """
        self.start_cleanup()
        task = asyncio.ensure_future(self._preload(to_utc(center), location, hour_radius))
        self._preload_tasks.add(task)
        task.add_done_callback(self._preload_tasks.discard)
        return task

    async def _preload(self, center: datetime, location: Optional[Location], hour_radius: int) -> int:
        try:
            location = self._resolve_location(location)
        except InvalidLocationError as e:
            logging.warning(f"Preload skipped: {e}")
            return 0

        targets = []
        for offset in range(-hour_radius, hour_radius + 1):
            if offset == 0:
                continue
            target = center + timedelta(hours=offset)
            if self.cache.has(target) or self.is_pending(target):
                continue
            targets.append(target)

        batches = [
            targets[i:i + self.preload_concurrency]
            for i in range(0, len(targets), self.preload_concurrency)
        ]
        loaded = 0
        for index, batch in enumerate(batches):
            results = await asyncio.gather(
                *(self._preload_one(target, location) for target in batch)
            )
            loaded += sum(1 for ok in results if ok)
            if index < len(batches) - 1:
                await asyncio.sleep(self.preload_pause_seconds)

        if targets:
            logging.info(f"Preloaded {loaded}/{len(targets)} hours around {center.isoformat()}")
        return loaded

    async def _preload_one(self, target: datetime, location: Location) -> bool:
        try:
            await self.get_data_for_time(target, location)
            return True
        except Exception as e:
            logging.debug(f"Preload failed for {target.isoformat()}: {e}")
            return False

    def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        return self.cache.invalidate(pattern)

    def cleanup(self) -> int:
        return self.cache.cleanup()

    def start_cleanup(self) -> Optional[asyncio.Task]:
        """
        Start the periodic sweep of expired cache entries if it isn't running.

        Called lazily from the async entry points, since the manager may be
        built before an event loop exists.

        Returns:
            The background task, or None when the sweep is disabled
        """
        if self.cleanup_interval_seconds <= 0:
            return None
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.ensure_future(self._cleanup_loop())
        return self._cleanup_task

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            removed = self.cleanup()
            if removed:
                logging.info(f"Cache cleanup removed {removed} expired entries")

    def stats(self) -> dict:
        """Get request and cache statistics."""
        lookups = self.request_count + self.cache_hit_count
        return {
            "request_count": self.request_count,
            "cache_hit_count": self.cache_hit_count,
            "error_count": self.error_count,
            "fallback_count": self.fallback_count,
            "pending_requests": len(self._pending),
            "cache_hit_rate": self.cache_hit_count / lookups if lookups else 0.0,
            "cache": self.cache.stats(),
        }

    async def close(self) -> None:
        """Cancel outstanding preload work and the cleanup sweep."""
        tasks = list(self._preload_tasks)
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)
            self._cleanup_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._preload_tasks.clear()
