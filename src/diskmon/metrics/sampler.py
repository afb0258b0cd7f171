"""
Background disk usage sampling using asyncio.

This module implements:
- collect_snapshot(): one psutil probe of every mounted partition
- DiskGauges: Prometheus gauges holding the latest reading per partition
- DiskSampler: a background asyncio task that collects a snapshot on a fixed
  interval, refreshes the gauges, and appends the snapshot to a SeriesStore

A failed cycle is logged and counted; the next cycle runs on schedule.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import psutil
from prometheus_client import CollectorRegistry, Gauge

from diskmon.errors import CollectionError, FailedPreconditionError
from diskmon.logging import get_logger
from diskmon.metrics.storage import PartitionReading, SeriesStore, Snapshot

if TYPE_CHECKING:
    from diskmon.config import MetricsConfig

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_SAMPLING_INTERVAL = 60  # seconds

STOP_TIMEOUT = 10.0  # seconds

METRIC_USAGE_BYTES = "disk_usage_bytes"
METRIC_USAGE_PERCENT = "disk_usage_percent"


# =============================================================================
# Enums and Data Models
# =============================================================================


class SamplerStatus(str, Enum):
    """Status of the disk sampler."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SamplerState:
    """
    Current state of the disk sampler.

    Attributes:
        status: Current sampler status.
        job_id: Identifier of the current sampling job.
        interval_seconds: Sampling interval.
        started_at: When the sampler was started.
        last_sample_at: When the last snapshot was stored.
        sample_count: Number of snapshots stored by this job.
        error_count: Number of failed cycles.
        last_error: Last error message if any.
    """

    status: SamplerStatus = SamplerStatus.STOPPED
    job_id: str | None = None
    interval_seconds: int = DEFAULT_SAMPLING_INTERVAL
    started_at: datetime | None = None
    last_sample_at: datetime | None = None
    sample_count: int = 0
    error_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "job_id": self.job_id,
            "interval_seconds": self.interval_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_sample_at": (
                self.last_sample_at.isoformat() if self.last_sample_at else None
            ),
            "sample_count": self.sample_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


# =============================================================================
# Collection
# =============================================================================


def collect_snapshot(
    *, all_partitions: bool = False, now: float | None = None
) -> Snapshot:
    """
    Probe the usage of every mounted partition.

    A partition whose usage probe fails is logged and left out of the
    snapshot; a partial snapshot is still a valid result.

    Args:
        all_partitions: Include pseudo, memory and duplicate filesystems.
        now: Capture time override (Unix timestamp); defaults to time.time().

    Returns:
        A Snapshot with one reading per readable partition.

    Raises:
        CollectionError: If the partition list cannot be read.
    """
    captured_at = int(time.time() if now is None else now)

    try:
        partitions = psutil.disk_partitions(all=all_partitions)
    except (OSError, RuntimeError) as e:
        raise CollectionError(
            f"Failed to enumerate partitions: {e}",
            details={"all_partitions": all_partitions},
        ) from e

    readings = []
    for partition in partitions:
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError as e:
            logger.warning(
                "Error getting usage for partition",
                extra={"path": partition.mountpoint, "error": str(e)},
            )
            continue

        readings.append(
            PartitionReading(
                path=partition.mountpoint,
                total_bytes=usage.total,
                used_bytes=usage.used,
                free_bytes=usage.free,
                used_percent=usage.percent,
            )
        )

    return Snapshot(captured_at=captured_at, partitions=tuple(readings))


class DiskGauges:
    """
    Prometheus gauges for the latest disk readings.

    Each instance owns its own CollectorRegistry so that several applications
    (or tests) can coexist in one process.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.usage_bytes = Gauge(
            METRIC_USAGE_BYTES,
            "Disk usage in bytes",
            ["path", "type"],
            registry=self.registry,
        )
        self.usage_percent = Gauge(
            METRIC_USAGE_PERCENT,
            "Disk usage percentage",
            ["path"],
            registry=self.registry,
        )

    def update(self, snapshot: Snapshot) -> None:
        """Set every gauge from the readings in ``snapshot``."""
        for reading in snapshot.partitions:
            self.usage_bytes.labels(reading.path, "total").set(reading.total_bytes)
            self.usage_bytes.labels(reading.path, "used").set(reading.used_bytes)
            self.usage_bytes.labels(reading.path, "free").set(reading.free_bytes)
            self.usage_percent.labels(reading.path).set(reading.used_percent)


# =============================================================================
# DiskSampler Class
# =============================================================================


class DiskSampler:
    """
    Background disk sampler using asyncio.

    Every ``interval_seconds`` the sampler:
    - Collects a Snapshot (in the default executor, psutil calls block)
    - Updates the Prometheus gauges
    - Appends the Snapshot to the SeriesStore

    Example:
        >>> store = SeriesStore(capacity=1440)
        >>> sampler = DiskSampler(store, DiskGauges())
        >>> await sampler.start()
        >>> await sampler.stop()
    """

    def __init__(
        self,
        store: SeriesStore,
        gauges: DiskGauges,
        config: MetricsConfig | None = None,
    ) -> None:
        """
        Initialize the DiskSampler.

        Args:
            store: Store receiving each collected snapshot.
            gauges: Gauges refreshed after each successful collection.
            config: Optional MetricsConfig for default settings.
        """
        self._store = store
        self._gauges = gauges
        self._config = config
        self._all_partitions = config.include_all_partitions if config else False
        self._state = SamplerState()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._lock = asyncio.Lock()

        if config:
            self._state.interval_seconds = config.sampling_interval_seconds

    @property
    def is_running(self) -> bool:
        """Check if the sampler is currently running."""
        return self._state.status == SamplerStatus.RUNNING

    def get_status(self) -> SamplerState:
        """Return a copy of the current SamplerState."""
        return SamplerState(
            status=self._state.status,
            job_id=self._state.job_id,
            interval_seconds=self._state.interval_seconds,
            started_at=self._state.started_at,
            last_sample_at=self._state.last_sample_at,
            sample_count=self._state.sample_count,
            error_count=self._state.error_count,
            last_error=self._state.last_error,
        )

    async def probe(self) -> Snapshot:
        """
        Collect a snapshot without storing it.

        Raises:
            CollectionError: If partition enumeration fails.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: collect_snapshot(all_partitions=self._all_partitions)
        )

    async def sample_once(self) -> Snapshot:
        """
        Run one collection cycle.

        Collects a snapshot, updates the gauges and appends the snapshot to
        the store. If the wall clock has stepped back behind the newest
        stored snapshot, the capture time is clamped to that snapshot's
        time so the reading is still stored in order.

        Returns:
            The stored snapshot.

        Raises:
            CollectionError: If partition enumeration fails; nothing is stored.
        """
        snapshot = await self.probe()

        # The sampler is the only writer, so latest() cannot move under us
        newest = self._store.latest()
        if newest is not None and snapshot.captured_at < newest.captured_at:
            logger.warning(
                "Clock moved backwards, clamping capture time",
                extra={
                    "captured_at": snapshot.captured_at,
                    "newest": newest.captured_at,
                },
            )
            snapshot = replace(snapshot, captured_at=newest.captured_at)

        self._gauges.update(snapshot)
        self._store.append(snapshot)

        self._state.sample_count += 1
        self._state.last_sample_at = datetime.now()
        logger.debug(
            "Stored disk snapshot",
            extra={
                "captured_at": snapshot.captured_at,
                "partitions": len(snapshot.partitions),
            },
        )
        return snapshot

    async def start(self) -> SamplerState:
        """
        Start the background sampling job at the configured interval.

        Returns:
            Current SamplerState after starting.

        Raises:
            FailedPreconditionError: If the sampler is already running.
        """
        async with self._lock:
            if self._state.status in (SamplerStatus.RUNNING, SamplerStatus.STARTING):
                raise FailedPreconditionError(
                    "Sampler is already running",
                    details={"job_id": self._state.job_id},
                )

            self._state.status = SamplerStatus.STARTING
            self._state.job_id = str(uuid.uuid4())[:8]
            self._state.started_at = datetime.now()
            self._state.sample_count = 0
            self._state.error_count = 0
            self._state.last_error = None
            self._stop_event.clear()

            self._task = asyncio.create_task(self._sampling_loop())
            self._state.status = SamplerStatus.RUNNING

            logger.info(
                "Disk sampler started",
                extra={
                    "job_id": self._state.job_id,
                    "interval_seconds": self._state.interval_seconds,
                    "capacity": self._store.capacity,
                },
            )

            return self.get_status()

    async def stop(self) -> SamplerState:
        """
        Stop the background sampling job gracefully.

        Waits for an in-progress cycle to finish, cancelling it after
        STOP_TIMEOUT seconds.

        Returns:
            Current SamplerState after stopping.
        """
        async with self._lock:
            if self._state.status not in (SamplerStatus.RUNNING, SamplerStatus.STARTING):
                return self.get_status()

            self._state.status = SamplerStatus.STOPPING
            self._stop_event.set()

            if self._task:
                try:
                    await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT)
                except TimeoutError:
                    logger.warning("Sampler task did not stop gracefully, cancelling")
                    self._task.cancel()
                    try:
                        await self._task
                    except asyncio.CancelledError:
                        pass
                except asyncio.CancelledError:
                    pass
                self._task = None

            self._state.status = SamplerStatus.STOPPED

            logger.info(
                "Disk sampler stopped",
                extra={
                    "job_id": self._state.job_id,
                    "sample_count": self._state.sample_count,
                },
            )

            return self.get_status()

    async def _sampling_loop(self) -> None:
        """Collect on every interval until the stop event is set."""
        while not self._stop_event.is_set():
            try:
                await self.sample_once()
            except Exception as e:
                self._state.error_count += 1
                self._state.last_error = str(e)
                logger.error(
                    "Error during disk sampling",
                    extra={"error": str(e), "job_id": self._state.job_id},
                )

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=float(self._state.interval_seconds),
                )
                break
            except TimeoutError:
                pass
