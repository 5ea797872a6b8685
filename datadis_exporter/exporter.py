"""Prometheus metrics exporter module.

This module handles:
- Defining operational gauges for export runs
- Exposing the metrics HTTP server on a configurable port
"""

import logging
import time
from typing import Iterable, Optional

from prometheus_client import Gauge, start_http_server, REGISTRY, CollectorRegistry

from datadis_exporter.records import CONSUMPTION_MEASUREMENT, POWER_MEASUREMENT, measurement_of

# Configure module logger
logger = logging.getLogger(__name__)


class DatadisMetrics:
    """Prometheus exporter for Datadis export runs.

    Exposes the following metrics:
    - datadis_export_success: Whether the last run succeeded (1=success, 0=failure)
    - datadis_export_timestamp: Unix timestamp of the last run
    - datadis_export_duration_seconds: Duration of the last run
    - datadis_exported_lines: Lines written by the last successful run, per measurement

    Attributes:
        port: HTTP server port (default 9121)
    """

    def __init__(self, port: int = 9121, registry: Optional[CollectorRegistry] = None):
        """Initialize the exporter.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._export_success = Gauge(
            'datadis_export_success',
            'Whether the last export succeeded (1=success, 0=failure)',
            registry=self._registry
        )

        self._export_timestamp = Gauge(
            'datadis_export_timestamp',
            'Unix timestamp of the last export',
            registry=self._registry
        )

        self._export_duration = Gauge(
            'datadis_export_duration_seconds',
            'Duration of the last export in seconds',
            registry=self._registry
        )

        self._exported_lines = Gauge(
            'datadis_exported_lines',
            'Number of lines written by the last successful export',
            ['measurement'],
            registry=self._registry
        )

    def set_export_result(self, success: bool, duration: float) -> None:
        """Update operational metrics after an export attempt."""
        self._export_success.set(1 if success else 0)
        self._export_timestamp.set(time.time())
        self._export_duration.set(duration)

    def set_line_counts(self, lines: Iterable[str]) -> None:
        """Record how many lines each measurement contributed."""
        counts = {CONSUMPTION_MEASUREMENT: 0, POWER_MEASUREMENT: 0}
        for line in lines:
            measurement = measurement_of(line)
            if measurement:
                counts[measurement] = counts.get(measurement, 0) + 1

        for measurement, count in counts.items():
            self._exported_lines.labels(measurement=measurement).set(count)

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at:
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
