"""Vulnerability collection engine.

Runs collection cycles on a fixed interval: discover images, fetch each
image's vulnerability data through the result cache with bounded
parallelism, then publish the assembled snapshot in one atomic swap.

Failure policy:
- discovery failure aborts the cycle and keeps the previous snapshot
- a failed fetch only drops that image from the new snapshot
- nothing is retried within a cycle; the next cycle is the retry
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from vulnrelay.exceptions import DiscoveryError, FetchError
from vulnrelay.schemas.vulnerability import (
    ImageRef,
    ImageVulnerabilityData,
    VulnerabilityResult,
)
from vulnrelay.services import metrics
from vulnrelay.services.providers.base import ImageSource, VulnerabilitySource
from vulnrelay.services.result_cache import ResultCache
from vulnrelay.services.snapshot import Snapshot, SnapshotHolder
from vulnrelay.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5 * 60.0
DEFAULT_FETCH_CONCURRENCY = 10


@dataclass
class CycleResult:
    """Outcome of a single collection cycle.

    Attributes:
        cycle: Cycle sequence number (1-based)
        succeeded: False only when discovery failed
        images_discovered: Images returned by the image source
        images_collected: Images present in the published snapshot
        fetch_errors: Images whose fetch failed
        cache_hits: Images served from the result cache
        skipped: Images not fetched because the engine was stopping
        duration: Wall time of the cycle in seconds
        error: Discovery error message when the cycle failed
    """

    cycle: int
    succeeded: bool
    images_discovered: int = 0
    images_collected: int = 0
    fetch_errors: int = 0
    cache_hits: int = 0
    skipped: int = 0
    duration: float = 0.0
    error: Optional[str] = None


class CollectionEngine:
    """Orchestrates image discovery and vulnerability collection.

    Each engine owns its cache and its snapshot holder, so several engines
    can coexist in one process.

    Example:
        engine = CollectionEngine(image_source, vuln_source, poll_interval=300)
        task = asyncio.create_task(engine.start())
        ...
        data, collected_at = engine.get_snapshot()
        engine.stop()
        await task
    """

    def __init__(
        self,
        image_source: ImageSource,
        vulnerability_source: VulnerabilitySource,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
        cache: Optional[ResultCache] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            image_source: Source of discovered images
            vulnerability_source: Source of per-image vulnerability results
            poll_interval: Seconds between the end of one cycle and the next
            fetch_concurrency: Maximum concurrent vulnerability fetches
            cache: Result cache; a fresh one is created when omitted
        """
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if fetch_concurrency < 1:
            raise ValueError(f"fetch_concurrency must be >= 1, got {fetch_concurrency}")

        self.image_source = image_source
        self.vulnerability_source = vulnerability_source
        self.poll_interval = poll_interval
        self.fetch_concurrency = fetch_concurrency
        self._cache = cache if cache is not None else ResultCache()
        self._snapshots = SnapshotHolder()
        self._stop_event = asyncio.Event()

        self._cycle_count = 0
        self.cycles_succeeded = 0
        self.cycles_failed = 0
        self.last_cycle: Optional[CycleResult] = None

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def start(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run collection cycles until stopped.

        Runs one cycle immediately so a snapshot exists before traffic is
        served, then one cycle per poll interval. The stop signal is checked
        between cycles; a cycle that has started always runs to completion.

        Args:
            stop_event: External stop signal, in addition to stop()
        """
        if stop_event is not None:
            # A stop() issued before start() carries over to the external signal
            if self._stop_event.is_set():
                stop_event.set()
            self._stop_event = stop_event

        await self.collect_once()

        logger.info(
            f"Starting periodic vulnerability collection (interval: {self.poll_interval:.0f}s, "
            f"concurrency: {self.fetch_concurrency})"
        )

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                await self.collect_once()

        logger.info("Vulnerability engine stopping")

    def stop(self) -> None:
        """Signal the cycle loop and pending fetches to stop."""
        self._stop_event.set()

    async def collect_once(self) -> CycleResult:
        """Run one full discovery-and-fetch cycle.

        Returns:
            CycleResult describing the cycle
        """
        self._cycle_count += 1
        cycle = self._cycle_count
        start_time = time.monotonic()

        logger.info(f"Starting vulnerability data collection (cycle {cycle})")

        try:
            images = await self.image_source.discover_images()
        except DiscoveryError as e:
            return self._fail_cycle(cycle, start_time, str(e))
        except Exception as e:
            logger.debug("Image discovery raised an unexpected error", exc_info=True)
            return self._fail_cycle(
                cycle, start_time, f"{self.image_source.name}: {type(e).__name__}: {e}"
            )

        logger.info(f"Discovered {len(images)} images")

        # One fetch per URI; the first placement reported wins
        unique: Dict[str, ImageRef] = {}
        for image in images:
            unique.setdefault(image.uri, image)
        if len(unique) < len(images):
            logger.debug(f"Ignoring {len(images) - len(unique)} duplicate image references")

        result = CycleResult(cycle=cycle, succeeded=True, images_discovered=len(images))
        collected: Dict[str, ImageVulnerabilityData] = {}
        collected_lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def fetch_image(image: ImageRef) -> None:
            async with semaphore:
                # Fetches not yet started when a stop is requested are skipped
                if self._stop_event.is_set():
                    result.skipped += 1
                    return

                try:
                    vuln, cache_hit = await self._fetch(image.uri)
                except FetchError as e:
                    logger.error(
                        f"Failed to get vulnerability data for {sanitize_log_message(image.uri)}: {e}"
                    )
                    result.fetch_errors += 1
                    metrics.fetch_errors_total.inc()
                    return
                except Exception as e:
                    logger.error(
                        f"Unexpected error fetching {sanitize_log_message(image.uri)}: "
                        f"{type(e).__name__}: {e}",
                        exc_info=True,
                    )
                    result.fetch_errors += 1
                    metrics.fetch_errors_total.inc()
                    return

                if vuln.image_uri != image.uri:
                    logger.error(
                        f"Vulnerability source returned data for {sanitize_log_message(vuln.image_uri)} "
                        f"when asked for {sanitize_log_message(image.uri)}, discarding"
                    )
                    result.fetch_errors += 1
                    metrics.fetch_errors_total.inc()
                    return

                if cache_hit:
                    result.cache_hits += 1
                async with collected_lock:
                    collected[image.uri] = ImageVulnerabilityData(
                        result=vuln, placement=image.placement
                    )

        await asyncio.gather(*(fetch_image(image) for image in unique.values()))

        snapshot = self._snapshots.publish(collected, cycle)

        result.images_collected = len(snapshot)
        result.duration = time.monotonic() - start_time
        self.cycles_succeeded += 1
        self.last_cycle = result
        metrics.collection_cycles_total.labels(outcome="success").inc()
        metrics.collection_cycle_duration.observe(result.duration)

        logger.info(
            f"Vulnerability data collection completed in {result.duration:.2f}s: "
            f"{result.images_collected}/{result.images_discovered} images processed, "
            f"{result.cache_hits} cache hits, {result.fetch_errors} errors"
            + (f", {result.skipped} skipped" if result.skipped else "")
        )
        return result

    def _fail_cycle(self, cycle: int, start_time: float, message: str) -> CycleResult:
        logger.error(f"Vulnerability collection failed: {message}")
        result = CycleResult(
            cycle=cycle,
            succeeded=False,
            duration=time.monotonic() - start_time,
            error=message,
        )
        self.cycles_failed += 1
        self.last_cycle = result
        metrics.collection_cycles_total.labels(outcome="failure").inc()
        return result

    async def get_image_vulnerability(self, image_uri: str) -> VulnerabilityResult:
        """Get vulnerability data for one image, from cache when fresh.

        Args:
            image_uri: Image URI to look up

        Returns:
            VulnerabilityResult for the image

        Raises:
            FetchError: If the cache misses and the source fails
        """
        vuln, _ = await self._fetch(image_uri)
        return vuln

    async def _fetch(self, image_uri: str) -> Tuple[VulnerabilityResult, bool]:
        cached = self._cache.get(image_uri)
        if cached is not None:
            metrics.cache_requests_total.labels(result="hit").inc()
            return cached, True

        metrics.cache_requests_total.labels(result="miss").inc()
        vuln = await self.vulnerability_source.get_vulnerabilities(image_uri)
        if vuln.image_uri == image_uri:
            self._cache.set(image_uri, vuln)
        return vuln, False

    def get_snapshot(self) -> Tuple[Dict[str, ImageVulnerabilityData], Optional[datetime]]:
        """Get the current vulnerability data and when it was collected.

        Never waits on an in-progress cycle. The returned dict is a copy, so
        callers may modify it freely.

        Returns:
            Tuple of (image URI -> data, collected_at); collected_at is None
            until the first cycle has published
        """
        snapshot = self._snapshots.current()
        if snapshot is None:
            return {}, None
        return dict(snapshot.entries), snapshot.collected_at

    def current_snapshot(self) -> Optional[Snapshot]:
        """The current immutable Snapshot object, or None before the first publish."""
        return self._snapshots.current()
