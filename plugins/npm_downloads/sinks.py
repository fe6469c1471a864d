"""
Sinks for the npm downloads plugin.

``OtlpMetricsSink`` publishes one gauge data point per record through a
fresh :class:`~core.infra.metrics.MetricsSession`; ``LogSink`` only logs the
points and is used for dry runs.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from opentelemetry.sdk.metrics.export import MetricExporter

from core.config import DEFAULT_OTLP_ENDPOINT
from core.interfaces import Sink
from core.models import MetricPoint, Record, VersionTable
from core.infra.metrics import MetricsSession


logger = logging.getLogger(__name__)


def to_points(package: str, records: Sequence[Record]) -> List[MetricPoint]:
    """One MetricPoint per Record, order preserved."""
    return [MetricPoint.from_record(package, record) for record in records]


def publish(
    package: str,
    records: Sequence[Record],
    *,
    endpoint: str = DEFAULT_OTLP_ENDPOINT,
    export_interval_ms: int = 5000,
    exporter: Optional[MetricExporter] = None,
) -> int:
    """Export *records* of *package* and return the number of points recorded.

    Blocking; raises :class:`~core.exceptions.PublishError` on build, flush
    or shutdown failure.
    """
    points = to_points(package, records)
    with MetricsSession(
        endpoint=endpoint,
        export_interval_ms=export_interval_ms,
        exporter=exporter,
    ) as session:
        session.bind_gauge()
        session.record(points)
        session.flush()
        session.shutdown()
    return len(points)


class OtlpMetricsSink(Sink):
    """Publishes a VersionTable to an OTLP/gRPC metrics endpoint."""

    name = "OtlpMetricsSink"

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_OTLP_ENDPOINT,
        export_interval_ms: int = 5000,
        exporter: Optional[MetricExporter] = None,
    ):
        self.endpoint = endpoint
        self.export_interval_ms = export_interval_ms
        self._exporter = exporter

    async def handle(self, table: VersionTable) -> None:
        """Run the blocking OTel SDK calls off the event loop."""
        count = await asyncio.to_thread(
            publish,
            table.package,
            table.records,
            endpoint=self.endpoint,
            export_interval_ms=self.export_interval_ms,
            exporter=self._exporter,
        )
        logger.info(f"Published {count} data points for {table.package} to {self.endpoint}")


class LogSink(Sink):
    """Dry-run sink: logs each point instead of exporting it."""

    name = "LogSink"

    def __init__(self):
        self.points: List[MetricPoint] = []

    async def handle(self, table: VersionTable) -> None:
        points = to_points(table.package, table.records)
        for point in points:
            logger.info(
                f"{point.instrument}{{package={point.labels['package']}, "
                f"version={point.labels['version']}}} = {point.value}"
            )
        self.points.extend(points)
        logger.info(f"Dry run: {len(points)} data points for {table.package} not exported")
