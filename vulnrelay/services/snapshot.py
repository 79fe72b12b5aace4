"""Published collection snapshots.

A Snapshot is built once per successful cycle and never modified. The
SnapshotHolder swaps the reference to the current snapshot under a lock, so a
reader sees either the previous snapshot or the new one in full.
"""

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Mapping, Optional

from vulnrelay.schemas.vulnerability import ImageVulnerabilityData


@dataclass(frozen=True)
class Snapshot:
    """Immutable result of one collection cycle.

    Attributes:
        entries: Image URI -> vulnerability data (read-only mapping)
        collected_at: When the snapshot was published (UTC)
        cycle: Sequence number of the cycle that produced it
    """

    entries: Mapping[str, ImageVulnerabilityData]
    collected_at: datetime
    cycle: int

    def __len__(self) -> int:
        return len(self.entries)


class SnapshotHolder:
    """Single-writer, many-reader holder of the current Snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Optional[Snapshot] = None

    def current(self) -> Optional[Snapshot]:
        """Return the current snapshot, or None before the first publish."""
        with self._lock:
            return self._current

    def publish(self, entries: Mapping[str, ImageVulnerabilityData], cycle: int) -> Snapshot:
        """Build a snapshot from entries and make it the current one.

        The entries are copied, so later changes to the caller's mapping do
        not leak into the published snapshot. collected_at never goes
        backwards, even if the wall clock does.

        Args:
            entries: Image URI -> vulnerability data collected this cycle
            cycle: Sequence number of the producing cycle

        Returns:
            The snapshot that was published
        """
        frozen_entries = MappingProxyType(dict(entries))
        with self._lock:
            collected_at = datetime.now(UTC)
            if self._current is not None and collected_at < self._current.collected_at:
                collected_at = self._current.collected_at
            snapshot = Snapshot(entries=frozen_entries, collected_at=collected_at, cycle=cycle)
            self._current = snapshot
        return snapshot
