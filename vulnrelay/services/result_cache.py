"""In-memory TTL cache for per-image vulnerability results.

Reduces load on the vulnerability source by remembering the last result for
each image for a fixed duration. Expired entries are treated as misses on
read but are only physically removed by cleanup(), which runs on its own
cadence (see SchedulerService), independent of the collection interval.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Dict, NamedTuple, Optional

from vulnrelay.schemas.vulnerability import VulnerabilityResult
from vulnrelay.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 30 * 60.0  # 30 minutes


@dataclass(frozen=True)
class CacheEntry:
    """A cached result and the monotonic time it stops being fresh."""

    result: VulnerabilityResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStats(NamedTuple):
    """Diagnostic counters. Never used to drive control flow."""

    total: int
    expired: int


class ResultCache:
    """Thread-safe in-memory cache of vulnerability results with TTL.

    All operations hold a single exclusive lock for the duration of a dict
    operation only; nothing here performs I/O and nothing here raises.
    Reads and writes share that lock rather than using a reader/writer
    lock: critical sections are single dict operations, so concurrent
    readers would gain nothing from a shared read lock.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache with TTL.

        Args:
            ttl: Time-to-live in seconds (default: 30 minutes)
            clock: Monotonic time source, injectable for tests
        """
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, image_uri: str) -> Optional[VulnerabilityResult]:
        """Get the cached result for an image if it has not expired.

        An expired entry reads as a miss but is left in place; removing it
        is cleanup()'s job.

        Args:
            image_uri: Image URI the result was stored under

        Returns:
            Cached VulnerabilityResult or None if missing/expired
        """
        with self._lock:
            entry = self._entries.get(image_uri)

        if entry is None or entry.is_expired(self._clock()):
            return None

        logger.debug(f"Cache hit for {sanitize_log_message(image_uri)}")
        return entry.result

    def set(self, image_uri: str, result: VulnerabilityResult) -> None:
        """Store a result, replacing any existing entry for the image.

        Args:
            image_uri: Image URI to cache under
            result: Result to store
        """
        entry = CacheEntry(result=result, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._entries[image_uri] = entry

        logger.debug(f"Cached vulnerability data for {sanitize_log_message(image_uri)}")

    def cleanup(self) -> int:
        """Remove expired entries from cache.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._entries[key]
            remaining = len(self._entries)

        if expired_keys:
            logger.debug(
                f"Cache cleanup completed: {len(expired_keys)} expired entries removed, "
                f"{remaining} remaining"
            )
        return len(expired_keys)

    def stats(self) -> CacheStats:
        """Count all entries and those that are expired but still present."""
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return CacheStats(total=total, expired=expired)

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
