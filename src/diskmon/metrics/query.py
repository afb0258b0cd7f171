"""
Projection of stored snapshots into named time series.

Each partition reading contributes one point to each of three series for its
path: used bytes, free bytes and usage percent. Series are keyed by a typed
SeriesKey; the ``"<path> - Used"`` display name is only produced when a
response is rendered.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import NamedTuple

from diskmon.metrics.storage import PartitionReading, Snapshot


class SeriesKind(str, Enum):
    """Which field of a partition reading a series tracks."""

    USED = "Used"
    FREE = "Free"
    USAGE_PERCENT = "Usage %"

    def value_of(self, reading: PartitionReading) -> float:
        """Extract this kind's value from a reading."""
        if self is SeriesKind.USED:
            return float(reading.used_bytes)
        if self is SeriesKind.FREE:
            return float(reading.free_bytes)
        return reading.used_percent


class SeriesKey(NamedTuple):
    """Identifies one series: a partition path and a kind."""

    path: str
    kind: SeriesKind

    @property
    def target(self) -> str:
        """Display name used by the dashboard, e.g. ``"/ - Usage %"``."""
        return f"{self.path} - {self.kind.value}"


# A point is (value, timestamp in milliseconds)
Point = tuple[float, int]


def project(
    snapshots: Iterable[Snapshot],
    path_filter: str | None = None,
) -> dict[SeriesKey, list[Point]]:
    """
    Regroup snapshots into per-path, per-kind series.

    Args:
        snapshots: Snapshots to project, normally the result of a range query.
        path_filter: If set (and non-empty), only readings whose path equals
            it exactly are projected.

    Returns:
        Mapping of SeriesKey to points sorted by timestamp. Points sharing a
        timestamp keep their snapshot order. Empty when nothing matched.
    """
    series: dict[SeriesKey, list[Point]] = {}

    for snapshot in snapshots:
        timestamp = snapshot.captured_at_ms
        for reading in snapshot.partitions:
            if path_filter and reading.path != path_filter:
                continue
            for kind in SeriesKind:
                series.setdefault(SeriesKey(reading.path, kind), []).append(
                    (kind.value_of(reading), timestamp)
                )

    # list.sort is stable, so ties keep ingestion order
    for points in series.values():
        points.sort(key=lambda point: point[1])

    return series
