"""
Pytest configuration for the disk monitor tests.
"""

from __future__ import annotations

from collections import namedtuple

import pytest

from diskmon.metrics.storage import PartitionReading, Snapshot

# Shapes of psutil.disk_partitions() / psutil.disk_usage() results
FakePartition = namedtuple("FakePartition", ["device", "mountpoint", "fstype", "opts"])
FakeUsage = namedtuple("FakeUsage", ["total", "used", "free", "percent"])


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


def make_snapshot(captured_at: int, **used_by_path: int) -> Snapshot:
    """Build a snapshot with one reading per path (used bytes given, total 100)."""
    return Snapshot(
        captured_at=captured_at,
        partitions=tuple(
            PartitionReading(
                path=path,
                total_bytes=100,
                used_bytes=used,
                free_bytes=100 - used,
                used_percent=float(used),
            )
            for path, used in used_by_path.items()
        ),
    )


@pytest.fixture
def fake_partitions() -> list[FakePartition]:
    """Two mounted partitions as psutil would report them."""
    return [
        FakePartition("/dev/sda1", "/", "ext4", "rw"),
        FakePartition("/dev/sdb1", "/data", "xfs", "rw"),
    ]


@pytest.fixture
def fake_usage() -> dict[str, FakeUsage]:
    """Usage per mount point for ``fake_partitions``."""
    return {
        "/": FakeUsage(total=1000, used=400, free=550, percent=42.1),
        "/data": FakeUsage(total=2000, used=500, free=1500, percent=25.0),
    }


@pytest.fixture
def snapshot_factory():
    """Return the ``make_snapshot`` helper."""
    return make_snapshot
