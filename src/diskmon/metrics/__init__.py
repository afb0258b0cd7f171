"""
Disk usage metrics: collection, in-memory storage, and querying.

Components:
- storage: Snapshot model and the bounded SeriesStore
- sampler: psutil collection, Prometheus gauges, background sampler
- timeparse: relative-time expressions ("30m", "2h", "7d")
- query: projection of snapshots into named series
- exporters: dashboard, scrape and live response shapes
"""

from diskmon.metrics.query import SeriesKey, SeriesKind, project
from diskmon.metrics.sampler import DiskGauges, DiskSampler, collect_snapshot
from diskmon.metrics.storage import PartitionReading, SeriesStore, Snapshot
from diskmon.metrics.timeparse import parse_relative_time, relative_range

__all__ = [
    "DiskGauges",
    "DiskSampler",
    "PartitionReading",
    "SeriesKey",
    "SeriesKind",
    "SeriesStore",
    "Snapshot",
    "collect_snapshot",
    "parse_relative_time",
    "project",
    "relative_range",
]
