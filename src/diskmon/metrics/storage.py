"""
In-memory storage for disk usage snapshots.

This module implements:
- PartitionReading / Snapshot: immutable results of one collection cycle
- SeriesStore: a bounded FIFO buffer of snapshots with inclusive range queries

The store is memory-resident only. Its capacity is derived from the retention
horizon divided by the sampling interval; once full, every append evicts the
oldest snapshot.

Thread Safety:
- One writer (the sampler) and many readers (HTTP handlers) share a store
- append and range hold the same lock, so a reader never observes a
  half-evicted buffer
- range returns a new list; callers may iterate it without holding the lock
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from diskmon.errors import InvalidArgumentError
from diskmon.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class PartitionReading:
    """Usage of one mounted partition at capture time.

    ``used_percent`` is reported by the OS probe and is not recomputed from
    the byte counts; reserved blocks make ``used + free`` differ from
    ``total`` on most filesystems.

    Attributes:
        path: Mount point (or volume identifier).
        total_bytes: Partition size in bytes.
        used_bytes: Bytes in use.
        free_bytes: Bytes available to unprivileged users.
        used_percent: Usage percentage as reported by the probe.
    """

    path: str
    total_bytes: int
    used_bytes: int
    free_bytes: int
    used_percent: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to the live snapshot wire format."""
        return {
            "path": self.path,
            "total": self.total_bytes,
            "used": self.used_bytes,
            "free": self.free_bytes,
            "usagePercent": self.used_percent,
        }


@dataclass(frozen=True)
class Snapshot:
    """One collection cycle's readings.

    Attributes:
        captured_at: Unix timestamp (whole seconds) of the cycle.
        partitions: Readings in discovery order.
    """

    captured_at: int
    partitions: tuple[PartitionReading, ...] = field(default_factory=tuple)

    @property
    def captured_at_ms(self) -> int:
        """Capture time as a millisecond epoch."""
        return self.captured_at * 1000

    def to_dict(self) -> dict[str, Any]:
        """Convert to the live snapshot wire format."""
        return {
            "timestamp": self.captured_at,
            "partitions": [p.to_dict() for p in self.partitions],
        }


# =============================================================================
# SeriesStore Class
# =============================================================================


class SeriesStore:
    """
    Bounded, append-only buffer of snapshots.

    Snapshots are kept in capture order. When the store holds ``capacity``
    snapshots, appending a new one drops the oldest first.

    Example:
        >>> store = SeriesStore(capacity=1440)
        >>> store.append(Snapshot(captured_at=1700000000))
        >>> store.range(1699999000, 1700000000)
        [Snapshot(captured_at=1700000000, partitions=())]
    """

    def __init__(self, capacity: int) -> None:
        """
        Initialize the SeriesStore.

        Args:
            capacity: Maximum number of snapshots retained.

        Raises:
            InvalidArgumentError: If capacity is less than 1.
        """
        if capacity < 1:
            raise InvalidArgumentError(
                "capacity must be at least 1",
                details={"capacity": capacity},
            )
        self._buffer: deque[Snapshot] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @classmethod
    def from_retention(
        cls, retention_seconds: int, interval_seconds: int
    ) -> SeriesStore:
        """
        Create a store sized to hold ``retention_seconds`` of samples.

        Args:
            retention_seconds: History horizon to keep.
            interval_seconds: Sampling interval.

        Returns:
            A new, empty SeriesStore.
        """
        if interval_seconds < 1:
            raise InvalidArgumentError(
                "interval_seconds must be at least 1",
                details={"interval_seconds": interval_seconds},
            )
        return cls(max(1, retention_seconds // interval_seconds))

    @property
    def capacity(self) -> int:
        """Maximum number of snapshots retained."""
        # maxlen is always set by __init__
        return self._buffer.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def append(self, snapshot: Snapshot) -> None:
        """
        Append a snapshot, evicting the oldest one when full.

        Args:
            snapshot: The snapshot to store.

        Raises:
            InvalidArgumentError: If the snapshot is older than the newest
                stored snapshot.
        """
        with self._lock:
            if self._buffer and snapshot.captured_at < self._buffer[-1].captured_at:
                raise InvalidArgumentError(
                    "snapshot is older than the newest stored snapshot",
                    details={
                        "captured_at": snapshot.captured_at,
                        "newest": self._buffer[-1].captured_at,
                    },
                )
            evicted = len(self._buffer) == self._buffer.maxlen
            self._buffer.append(snapshot)

        if evicted:
            logger.debug(
                "Evicted oldest snapshot",
                extra={"capacity": self.capacity},
            )

    def range(self, start_time: float, end_time: float) -> list[Snapshot]:
        """
        Return the snapshots captured within ``[start_time, end_time]``.

        Both bounds are inclusive Unix timestamps in seconds. An empty list is
        returned when nothing falls in the range.

        Args:
            start_time: Range start (inclusive).
            end_time: Range end (inclusive).

        Returns:
            Matching snapshots in ascending capture order.
        """
        with self._lock:
            return [
                s for s in self._buffer if start_time <= s.captured_at <= end_time
            ]

    def snapshots(self) -> list[Snapshot]:
        """Return a copy of every stored snapshot, oldest first."""
        with self._lock:
            return list(self._buffer)

    def latest(self) -> Snapshot | None:
        """Return the most recent snapshot, or None when the store is empty."""
        with self._lock:
            return self._buffer[-1] if self._buffer else None
