"""
Disk space monitor.

Samples partition usage in the background, keeps a bounded in-memory history,
and serves it as Grafana JSON time series, Prometheus gauges, and a live
JSON snapshot over HTTP.
"""

__version__ = "0.1.0"
