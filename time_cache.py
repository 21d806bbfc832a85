"""Hour-keyed in-memory cache of ground data samples with TTL expiry and LRU eviction."""
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Pattern, Union

from ground_data import GroundData, TimestampLike, to_utc


def truncate_to_hour(timestamp: TimestampLike) -> datetime:
    """Zero the minutes, seconds and microseconds of a timestamp (UTC)."""
    return to_utc(timestamp).replace(minute=0, second=0, microsecond=0)


def cache_key(timestamp: TimestampLike) -> str:
    """
    Build the cache identity for a timestamp.

    Two timestamps in the same UTC clock hour always produce the same key.
    """
    return truncate_to_hour(timestamp).isoformat()


@dataclass
class CacheEntry:
    key: str
    data: GroundData
    stored_at: float
    expires_at: float
    last_access: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class Surrounding:
    """Result of a neighbourhood lookup around a timestamp."""
    exact: Optional[GroundData] = None
    before: Optional[GroundData] = None
    after: Optional[GroundData] = None
    closest: Optional[GroundData] = None

    @property
    def has_bracket(self) -> bool:
        return self.before is not None and self.after is not None


class TimeCache:
    """
    Bounded store of samples keyed by truncated hour.

    Expired entries are dropped lazily on get()/has() and in bulk by
    cleanup(), which callers should run periodically rather than on every
    access.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300,  # 5 minutes
        max_size: int = 200,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl_seconds: Lifetime of an entry when set() gets no TTL
            max_size: Maximum number of entries before LRU eviction
            clock: Time source in seconds (injectable for tests)
        """
        self.default_ttl_seconds = default_ttl_seconds
        self.max_size = max_size
        self._clock = clock
        # Least recently accessed first
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, timestamp: TimestampLike) -> bool:
        return self.has(timestamp)

    def set(self, timestamp: TimestampLike, data: GroundData, ttl_seconds: Optional[float] = None) -> str:
        """
        Store a sample under the hour of timestamp (last write wins).

        Args:
            timestamp: Instant the sample belongs to
            data: Sample to store
            ttl_seconds: Custom lifetime (default: default_ttl_seconds)

        Returns:
            The cache key used
        """
        key = cache_key(timestamp)
        now = self._clock()
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds

        if key not in self._entries and len(self._entries) >= self.max_size:
            self.evict_oldest()

        existing = self._entries.get(key)
        if existing is not None:
            existing.data = data
            existing.stored_at = now
            existing.expires_at = now + ttl
            existing.last_access = now
            self._entries.move_to_end(key)
        else:
            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                stored_at=now,
                expires_at=now + ttl,
                last_access=now,
            )
        logging.debug(f"Cached '{key}' (TTL: {ttl}s, size: {len(self._entries)})")
        return key

    def get(self, timestamp: TimestampLike) -> Optional[GroundData]:
        """Get a live sample for the hour of timestamp, or None."""
        key = cache_key(timestamp)
        entry = self._entries.get(key)
        if entry is None:
            logging.debug(f"Cache miss for '{key}'")
            return None

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            logging.debug(f"Cache expired for '{key}'")
            return None

        entry.last_access = now
        self._entries.move_to_end(key)
        return entry.data

    def has(self, timestamp: TimestampLike) -> bool:
        """Check for a live entry without counting it as an access."""
        key = cache_key(timestamp)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    def peek(self, timestamp: TimestampLike) -> Optional[GroundData]:
        """Get the stored sample even if it expired. No side effects."""
        entry = self.peek_entry(timestamp)
        return entry.data if entry is not None else None

    def peek_entry(self, timestamp: TimestampLike) -> Optional[CacheEntry]:
        return self._entries.get(cache_key(timestamp))

    def restore(self, entry: CacheEntry) -> bool:
        """
        Put back an entry that get() or has() dropped, keeping its expiry.

        An expired entry stays expired, so it is only visible to peek() and
        never served as a live hit. Nothing happens if the key was stored
        again in the meantime.

        Returns:
            True if the entry was put back
        """
        if entry.key in self._entries:
            return False
        if len(self._entries) >= self.max_size:
            self.evict_oldest()
        entry.last_access = self._clock()
        self._entries[entry.key] = entry
        return True

    def find_surrounding(self, timestamp: TimestampLike) -> Surrounding:
        """
        Locate cached samples around a timestamp.

        Linear scan over live entries; fine because the cache is bounded.

        Args:
            timestamp: Target instant

        Returns:
            Surrounding with only `exact` set when the target hour is cached,
            otherwise the nearest sample strictly before, strictly after and
            the closest one overall (earlier sample wins a tie)
        """
        target = to_utc(timestamp)
        key = cache_key(target)
        now = self._clock()

        exact = self._entries.get(key)
        if exact is not None and not exact.is_expired(now):
            return Surrounding(exact=exact.data)

        result = Surrounding()
        closest_distance = None
        closest_time = None
        for entry in self._entries.values():
            if entry.is_expired(now) or entry.data.timestamp is None:
                continue
            sample_time = entry.data.timestamp
            distance = abs((sample_time - target).total_seconds())

            if (
                closest_distance is None
                or distance < closest_distance
                or (distance == closest_distance and sample_time < closest_time)
            ):
                closest_distance = distance
                closest_time = sample_time
                result.closest = entry.data

            if sample_time < target:
                if result.before is None or sample_time > result.before.timestamp:
                    result.before = entry.data
            elif sample_time > target:
                if result.after is None or sample_time < result.after.timestamp:
                    result.after = entry.data
        return result

    def evict_oldest(self) -> Optional[str]:
        """
        Remove the least recently accessed entry.

        Returns:
            Key that was evicted, or None if the cache is empty
        """
        if not self._entries:
            return None
        key, _ = self._entries.popitem(last=False)
        logging.debug(f"Evicted oldest entry: '{key}'")
        return key

    def cleanup(self) -> int:
        """Remove all expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logging.debug(f"Cleaned up {len(expired)} expired entries")
        return len(expired)

    def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        """
        Remove entries whose key contains a substring or matches a regex.

        Args:
            pattern: Substring, or compiled regular expression (re.search)

        Returns:
            Number of entries removed
        """
        if isinstance(pattern, str):
            matches = [key for key in self._entries if pattern in key]
        elif isinstance(pattern, re.Pattern):
            matches = [key for key in self._entries if pattern.search(key)]
        else:
            raise TypeError(f"Unsupported invalidation pattern: {pattern!r}")
        for key in matches:
            del self._entries[key]
        if matches:
            logging.info(f"Invalidated {len(matches)} cache entries matching {pattern!r}")
        return len(matches)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        """Get cache statistics."""
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "expired": expired,
            "valid": len(self._entries) - expired,
            "default_ttl_seconds": self.default_ttl_seconds,
        }
