"""
HTTP server for the disk-space monitor.

Endpoints:
- GET /metrics/disk: live snapshot from a fresh probe (JSON)
- GET /grafana: stored history as Grafana time series (JSON)
- GET /grafana/simple: relative-time shortcut, redirects to /grafana
- GET /metrics: Prometheus gauges (text exposition format)
- GET /status: sampler and store state (JSON)

The store, gauges and sampler are owned by a MonitorState created with the
application and reachable from handlers through ``request.app.state``.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from diskmon import __version__
from diskmon.config import AppConfig, load_config
from diskmon.errors import (
    FormatError,
    InternalError,
    InvalidArgumentError,
    MonitorError,
)
from diskmon.logging import get_logger, setup_logging
from diskmon.metrics.exporters import (
    SCRAPE_CONTENT_TYPE,
    render_scrape,
    to_live,
    to_timeseries,
)
from diskmon.metrics.query import project
from diskmon.metrics.sampler import DiskGauges, DiskSampler
from diskmon.metrics.storage import SeriesStore
from diskmon.metrics.timeparse import relative_range

logger = get_logger(__name__)

# Error code -> HTTP status
ERROR_STATUS = {
    "invalid_argument": 400,
    "format_error": 400,
    "collection_error": 500,
    "failed_precondition": 500,
    "internal": 500,
}

# Signed 64-bit bounds for millisecond query parameters
MIN_MILLIS = -(2**63)
MAX_MILLIS = 2**63 - 1


@dataclass
class MonitorState:
    """
    Everything the request handlers and the sampler share.

    Attributes:
        config: Application configuration.
        store: Snapshot history written by the sampler.
        gauges: Live Prometheus gauges.
        sampler: Background collector feeding store and gauges.
        clock: Returns the current Unix time in seconds.
    """

    config: AppConfig
    store: SeriesStore
    gauges: DiskGauges
    sampler: DiskSampler
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def from_config(cls, config: AppConfig) -> MonitorState:
        """Create a fresh store, gauges and sampler sized from ``config``."""
        store = SeriesStore(config.metrics.store_capacity)
        gauges = DiskGauges()
        return cls(
            config=config,
            store=store,
            gauges=gauges,
            sampler=DiskSampler(store, gauges, config.metrics),
        )


def _parse_millis(name: str, value: str | None) -> int:
    """
    Parse a millisecond epoch query parameter.

    Accepts an optional sign followed by ASCII digits, within the signed
    64-bit range.

    Raises:
        InvalidArgumentError: If the value is missing.
        FormatError: If the value is not such an integer.
    """
    if value is None:
        raise InvalidArgumentError(
            f"Missing '{name}' parameter", details={"parameter": name}
        )

    digits = value[1:] if value[:1] in ("+", "-") else value
    # int() alone would also take spaces, underscores and non-ASCII digits
    if digits.isascii() and digits.isdigit() and len(digits.lstrip("0")) <= 19:
        millis = int(value)
        if MIN_MILLIS <= millis <= MAX_MILLIS:
            return millis
    raise FormatError(
        f"Invalid '{name}' parameter",
        details={"parameter": name, "value": value},
    )


def _state(request: Request) -> MonitorState:
    return request.app.state.monitor


async def handle_monitor_error(request: Request, exc: MonitorError) -> JSONResponse:
    """Map a MonitorError to a JSON error response."""
    status_code = ERROR_STATUS.get(exc.error_code, 500)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request failed",
        extra={
            "path": request.url.path,
            "error_code": exc.error_code,
            "error": exc.message,
        },
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and answer with an internal error."""
    logger.exception(
        "Unexpected error processing request",
        extra={"path": request.url.path, "error": str(exc)},
    )
    error = InternalError(
        f"Internal server error: {type(exc).__name__}",
        details={"exception": str(exc)},
    )
    return JSONResponse(status_code=500, content=error.to_dict())


async def live_snapshot(request: Request) -> dict[str, Any]:
    """Probe every partition now and return the readings."""
    snapshot = await _state(request).sampler.probe()
    return to_live(snapshot)


async def grafana_query(
    request: Request,
    path: str | None = None,
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
) -> list[dict[str, Any]]:
    """Return stored history between ``from`` and ``to`` (ms epoch)."""
    from_ms = _parse_millis("from", from_)
    to_ms = _parse_millis("to", to)

    snapshots = _state(request).store.range(from_ms // 1000, to_ms // 1000)
    return to_timeseries(project(snapshots, path))


async def grafana_simple(
    request: Request,
    path: str | None = None,
    time_expr: str = Query(default="", alias="time"),
) -> RedirectResponse:
    """Redirect a relative-time query (``time=2h``) to /grafana."""
    now_ms = int(_state(request).clock() * 1000)
    from_ms, to_ms = relative_range(time_expr, now_ms)

    params: dict[str, Any] = {"from": from_ms, "to": to_ms}
    if path:
        params = {"path": path, **params}
    return RedirectResponse(url=f"/grafana?{urlencode(params)}", status_code=307)


async def prometheus_metrics(request: Request) -> Response:
    """Expose the live gauges; no collection is triggered."""
    return Response(
        content=render_scrape(_state(request).gauges),
        media_type=SCRAPE_CONTENT_TYPE,
    )


async def status(request: Request) -> dict[str, Any]:
    """Report sampler state and store occupancy."""
    state = _state(request)
    latest = state.store.latest()
    return {
        "sampler": state.sampler.get_status().to_dict(),
        "store": {
            "size": len(state.store),
            "capacity": state.store.capacity,
            "latest": latest.captured_at if latest else None,
        },
    }


def create_app(
    config: AppConfig | None = None,
    *,
    monitor: MonitorState | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Application configuration; defaults are used if omitted.
        monitor: Pre-built shared state (tests inject stores and clocks).

    Returns:
        The configured application. The sampler is started by the lifespan
        handler when ``config.metrics.autostart`` is true.
    """
    if monitor is None:
        monitor = MonitorState.from_config(config or AppConfig())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if monitor.config.metrics.autostart:
            await monitor.sampler.start()
        try:
            yield
        finally:
            await monitor.sampler.stop()

    app = FastAPI(title="diskmon", version=__version__, lifespan=lifespan)
    app.state.monitor = monitor

    app.add_exception_handler(MonitorError, handle_monitor_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.add_api_route("/metrics/disk", live_snapshot, methods=["GET"])
    app.add_api_route("/grafana", grafana_query, methods=["GET"])
    app.add_api_route("/grafana/simple", grafana_simple, methods=["GET"])
    app.add_api_route("/metrics", prometheus_metrics, methods=["GET"])
    app.add_api_route("/status", status, methods=["GET"])

    return app


def main(argv: list[str] | None = None) -> None:
    """Console entry point: load config, set up logging, serve."""
    config = load_config(cli_args=argv)
    setup_logging(config.logging)

    logger.info(
        "Starting disk monitor",
        extra={
            "listen": config.server.listen,
            "interval_seconds": config.metrics.sampling_interval_seconds,
            "capacity": config.metrics.store_capacity,
        },
    )
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    main()
