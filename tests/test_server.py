"""
Tests for the HTTP endpoints.

This test module validates:
- Live snapshot endpoint and its collection failure path
- Range queries and their parameter validation
- Relative-time redirects
- Prometheus scrape output
- Sampler lifecycle tied to the application lifespan
"""

from __future__ import annotations

import time
from pathlib import Path
from unittest import mock
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from diskmon.config import AppConfig, MetricsConfig
from diskmon.metrics.sampler import DiskGauges, DiskSampler, SamplerStatus
from diskmon.metrics.storage import SeriesStore
from diskmon.server import ERROR_STATUS, MonitorState, create_app, main

FIXED_NOW = 1_700_000_000.0

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config() -> AppConfig:
    """Configuration with the background sampler disabled."""
    return AppConfig(metrics=MetricsConfig(autostart=False))


@pytest.fixture
def monitor(config: AppConfig) -> MonitorState:
    """Shared state with a small store and a fixed clock."""
    store = SeriesStore(capacity=3)
    gauges = DiskGauges()
    return MonitorState(
        config=config,
        store=store,
        gauges=gauges,
        sampler=DiskSampler(store, gauges, config.metrics),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def client(monitor: MonitorState) -> TestClient:
    """Test client for an application built around ``monitor``."""
    return TestClient(create_app(monitor=monitor))


@pytest.fixture
def filled(monitor: MonitorState, snapshot_factory) -> MonitorState:
    """Store after appending t=1..4 with capacity three."""
    for t, used in [(1, 10), (2, 20), (3, 30), (4, 40)]:
        monitor.store.append(snapshot_factory(t, **{"/": used, "/data": used + 1}))
    return monitor


# =============================================================================
# Tests for /metrics/disk
# =============================================================================


class TestLiveSnapshot:
    """Tests for the live snapshot endpoint."""

    def test_returns_fresh_probe(
        self, client: TestClient, monitor: MonitorState, fake_partitions, fake_usage
    ) -> None:
        """Test the live shape with a fresh capture time on an empty store."""
        with (
            patch(
                "diskmon.metrics.sampler.psutil.disk_partitions",
                return_value=fake_partitions,
            ),
            patch(
                "diskmon.metrics.sampler.psutil.disk_usage",
                side_effect=lambda path: fake_usage[path],
            ),
        ):
            before = int(time.time())
            response = client.get("/metrics/disk")

        assert response.status_code == 200
        body = response.json()
        assert body["timestamp"] >= before
        assert [p["path"] for p in body["partitions"]] == ["/", "/data"]
        assert body["partitions"][0]["usagePercent"] == 42.1
        assert len(monitor.store) == 0

    def test_collection_failure(self, client: TestClient) -> None:
        """Test that an enumeration failure maps to 500."""
        with patch(
            "diskmon.metrics.sampler.psutil.disk_partitions",
            side_effect=OSError("no /proc"),
        ):
            response = client.get("/metrics/disk")

        assert response.status_code == 500
        assert response.json()["error_code"] == "collection_error"


# =============================================================================
# Tests for /grafana
# =============================================================================


class TestGrafanaQuery:
    """Tests for the range query endpoint."""

    def test_range_after_eviction(self, client: TestClient, filled: MonitorState) -> None:
        """Test the capacity-three scenario through HTTP."""
        response = client.get("/grafana", params={"path": "/", "from": 2000, "to": 4000})

        assert response.status_code == 200
        body = response.json()
        assert [entry["target"] for entry in body] == [
            "/ - Free",
            "/ - Usage %",
            "/ - Used",
        ]
        used = body[2]
        assert used["datapoints"] == [[20.0, 2000], [30.0, 3000], [40.0, 4000]]

    def test_without_path_returns_all(self, client: TestClient, filled: MonitorState) -> None:
        """Test that omitting path returns every partition."""
        response = client.get("/grafana", params={"from": 0, "to": 10_000})

        assert len(response.json()) == 6

    def test_millisecond_bounds_truncate_to_seconds(
        self, client: TestClient, filled: MonitorState
    ) -> None:
        """Test that sub-second bounds include the containing second."""
        response = client.get(
            "/grafana", params={"path": "/", "from": 3999, "to": 4999}
        )

        used = next(e for e in response.json() if e["target"] == "/ - Used")
        assert used["datapoints"] == [[30.0, 3000], [40.0, 4000]]

    def test_empty_range(self, client: TestClient, filled: MonitorState) -> None:
        """Test that a range with no data returns an empty list."""
        response = client.get("/grafana", params={"from": 50_000, "to": 60_000})

        assert response.status_code == 200
        assert response.json() == []

    def test_unknown_path(self, client: TestClient, filled: MonitorState) -> None:
        """Test that a path matching nothing returns an empty list."""
        response = client.get(
            "/grafana", params={"path": "/nope", "from": 0, "to": 10_000}
        )

        assert response.json() == []

    @pytest.mark.parametrize(("params", "name"), [({"to": 1000}, "from"), ({"from": 1000}, "to")])
    def test_missing_bounds(self, client: TestClient, params: dict, name: str) -> None:
        """Test that a missing bound gives 400 invalid_argument."""
        response = client.get("/grafana", params=params)

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "invalid_argument"
        assert f"'{name}'" in body["message"]

    @pytest.mark.parametrize(
        ("params", "name"),
        [
            ({"from": "abc", "to": 1000}, "from"),
            ({"from": 1000, "to": "1.5"}, "to"),
            ({"from": "1_000", "to": 5000}, "from"),
            ({"from": " 1000", "to": 5000}, "from"),
            ({"from": "", "to": 5000}, "from"),
            ({"from": "-", "to": 5000}, "from"),
            ({"from": 0, "to": "١٢"}, "to"),
            ({"from": 0, "to": "9223372036854775808"}, "to"),
            ({"from": 0, "to": "9" * 5000}, "to"),
        ],
    )
    def test_malformed_bounds(self, client: TestClient, params: dict, name: str) -> None:
        """Test that a non-integer bound gives 400 format_error."""
        response = client.get("/grafana", params=params)

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "format_error"
        assert f"'{name}'" in body["message"]

    def test_signed_bounds(self, client: TestClient, filled: MonitorState) -> None:
        """Test that a leading sign is accepted."""
        response = client.get("/grafana", params={"path": "/", "from": "-5", "to": "+2000"})

        assert response.status_code == 200
        used = next(e for e in response.json() if e["target"] == "/ - Used")
        assert used["datapoints"] == [[20.0, 2000]]


# =============================================================================
# Tests for /grafana/simple
# =============================================================================


class TestGrafanaSimple:
    """Tests for the relative-time redirect endpoint."""

    def test_redirects_with_computed_range(self, client: TestClient) -> None:
        """Test from/to against a fixed clock."""
        response = client.get(
            "/grafana/simple",
            params={"path": "/", "time": "1h"},
            follow_redirects=False,
        )

        assert response.status_code == 307
        location = urlsplit(response.headers["location"])
        query = parse_qs(location.query)
        now_ms = int(FIXED_NOW * 1000)
        assert location.path == "/grafana"
        assert query["path"] == ["/"]
        assert query["from"] == [str(now_ms - 3_600_000)]
        assert query["to"] == [str(now_ms)]

    def test_redirect_without_path(self, client: TestClient) -> None:
        """Test that path is omitted when not given."""
        response = client.get(
            "/grafana/simple", params={"time": "30m"}, follow_redirects=False
        )

        query = parse_qs(urlsplit(response.headers["location"]).query)
        assert "path" not in query

    def test_follow_redirect(self, client: TestClient, monitor: MonitorState, snapshot_factory) -> None:
        """Test that the redirect target serves recent data."""
        monitor.store.append(snapshot_factory(int(FIXED_NOW) - 60, **{"/": 55}))

        response = client.get("/grafana/simple", params={"path": "/", "time": "2h"})

        assert response.status_code == 200
        used = next(e for e in response.json() if e["target"] == "/ - Used")
        assert used["datapoints"] == [[55.0, (int(FIXED_NOW) - 60) * 1000]]

    @pytest.mark.parametrize("expr", ["", "30", "30x", "h", "99999999999999d"])
    def test_bad_expression(self, client: TestClient, expr: str) -> None:
        """Test that malformed expressions give 400."""
        response = client.get(
            "/grafana/simple", params={"time": expr}, follow_redirects=False
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "format_error"


# =============================================================================
# Tests for /metrics and /status
# =============================================================================


class TestPrometheusMetrics:
    """Tests for the scrape endpoint."""

    def test_reports_gauges(
        self, client: TestClient, monitor: MonitorState, snapshot_factory
    ) -> None:
        """Test the text exposition of the live gauges."""
        monitor.gauges.update(snapshot_factory(1, **{"/": 40}))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'disk_usage_bytes{path="/",type="used"} 40.0' in response.text
        assert 'disk_usage_percent{path="/"} 40.0' in response.text

    def test_does_not_collect(self, client: TestClient) -> None:
        """Test that scraping never probes the disks."""
        with patch("diskmon.metrics.sampler.psutil.disk_partitions") as partitions:
            client.get("/metrics")

        partitions.assert_not_called()


class TestStatus:
    """Tests for the status endpoint."""

    def test_status(self, client: TestClient, filled: MonitorState) -> None:
        """Test sampler and store fields."""
        body = client.get("/status").json()

        assert body["sampler"]["status"] == "stopped"
        assert body["store"] == {"size": 3, "capacity": 3, "latest": 4}


# =============================================================================
# Tests for Application Lifecycle
# =============================================================================


class TestLifespan:
    """Tests for sampler start/stop with the application."""

    def test_autostart(self, fake_partitions, fake_usage) -> None:
        """Test that the sampler runs while the app is up."""
        config = AppConfig(metrics=MetricsConfig(autostart=True))
        monitor = MonitorState.from_config(config)

        with (
            patch(
                "diskmon.metrics.sampler.psutil.disk_partitions",
                return_value=fake_partitions,
            ),
            patch(
                "diskmon.metrics.sampler.psutil.disk_usage",
                side_effect=lambda path: fake_usage[path],
            ),
        ):
            with TestClient(create_app(monitor=monitor)) as client:
                assert monitor.sampler.is_running
                for _ in range(50):
                    if len(monitor.store):
                        break
                    time.sleep(0.02)
                assert len(monitor.store) == 1
                assert 'path="/data"' in client.get("/metrics").text

        assert monitor.sampler.get_status().status == SamplerStatus.STOPPED

    def test_no_autostart(self, monitor: MonitorState) -> None:
        """Test that autostart=false leaves the sampler stopped."""
        with TestClient(create_app(monitor=monitor)):
            assert not monitor.sampler.is_running

    def test_state_from_config(self) -> None:
        """Test that the store is sized from retention and interval."""
        config = AppConfig(
            metrics=MetricsConfig(sampling_interval_seconds=30, retention_hours=2)
        )

        monitor = MonitorState.from_config(config)

        assert monitor.store.capacity == 240
        assert monitor.sampler.get_status().interval_seconds == 30


class TestErrorStatus:
    """Tests for the error code mapping."""

    def test_unexpected_error(self, monitor: MonitorState) -> None:
        """Test that an unexpected exception becomes an internal error."""
        client = TestClient(create_app(monitor=monitor), raise_server_exceptions=False)

        with patch.object(monitor.store, "range", side_effect=RuntimeError("boom")):
            response = client.get("/grafana", params={"from": 0, "to": 1000})

        assert response.status_code == 500
        body = response.json()
        assert body["error_code"] == "internal"
        assert "RuntimeError" in body["message"]

    def test_client_errors(self) -> None:
        """Test which codes are client errors."""
        assert ERROR_STATUS["invalid_argument"] == 400
        assert ERROR_STATUS["format_error"] == 400
        assert ERROR_STATUS["collection_error"] == 500


class TestMain:
    """Tests for the console entry point."""

    def test_main_runs_uvicorn(self) -> None:
        """Test that main serves on the configured address."""
        with (
            mock.patch.dict("os.environ", {}, clear=True),
            patch("diskmon.config.DEFAULT_CONFIG_PATH", Path("/nonexistent.yml")),
            patch("diskmon.server.setup_logging"),
            patch("diskmon.server.uvicorn.run") as run,
        ):
            main(["--listen", "127.0.0.1:9999", "--log-level", "warning"])

        run.assert_called_once()
        kwargs = run.call_args.kwargs
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9999
        assert kwargs["log_level"] == "warning"
