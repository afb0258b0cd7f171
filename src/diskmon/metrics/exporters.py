"""
Response renderers over stored and live disk data.

- to_timeseries: Grafana JSON datasource shape, ``[{target, datapoints}]``
- render_scrape: Prometheus text exposition of the live gauges
- to_live: the most recent snapshot as plain JSON
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

if TYPE_CHECKING:
    from diskmon.metrics.query import Point, SeriesKey
    from diskmon.metrics.sampler import DiskGauges
    from diskmon.metrics.storage import Snapshot

SCRAPE_CONTENT_TYPE = CONTENT_TYPE_LATEST


def to_timeseries(series: dict[SeriesKey, list[Point]]) -> list[dict[str, Any]]:
    """
    Render projected series in the dashboard time-series shape.

    Entries are ordered by target name so that identical data always
    produces an identical response.

    Args:
        series: Output of ``project``.

    Returns:
        A list of ``{"target": name, "datapoints": [[value, ts_ms], ...]}``.
    """
    rendered = [
        {
            "target": key.target,
            "datapoints": [[value, timestamp] for value, timestamp in points],
        }
        for key, points in series.items()
    ]
    rendered.sort(key=lambda entry: entry["target"])
    return rendered


def render_scrape(gauges: DiskGauges) -> bytes:
    """Render the current gauge values in the Prometheus text format."""
    return generate_latest(gauges.registry)


def to_live(snapshot: Snapshot) -> dict[str, Any]:
    """Render a single snapshot in the live snapshot shape."""
    return snapshot.to_dict()
