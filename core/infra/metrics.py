"""
metrics.py – OTLP metrics session with an explicit lifecycle.

A session goes ``build -> bind_gauge -> record -> flush -> shutdown`` exactly
once. Each session owns a private MeterProvider that is never installed as
the global provider, so nothing leaks between packages.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional, Sequence

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricExportResult,
    MetricsData,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME as SERVICE_NAME_KEY
from opentelemetry.sdk.resources import Resource

from core.config import DEFAULT_OTLP_ENDPOINT, SERVICE_NAME
from core.exceptions import PublishError
from core.models import INSTRUMENT_NAME, MetricPoint

logger = logging.getLogger(__name__)

METER_NAME = SERVICE_NAME
INSTRUMENT_DESCRIPTION = "NPM downloads per package version"


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SESSION_BUILT = "session_built"
    INSTRUMENT_BOUND = "instrument_bound"
    RECORDED = "recorded"
    FLUSHED = "flushed"
    SHUT_DOWN = "shut_down"


class _TrackingExporter(MetricExporter):
    """Delegating exporter that remembers failed exports and shutdown errors.

    The periodic reader logs and discards export results; the session needs
    them to tell whether a flush actually delivered anything.
    """

    def __init__(self, inner: MetricExporter) -> None:
        super().__init__(
            preferred_temporality=inner._preferred_temporality,
            preferred_aggregation=inner._preferred_aggregation,
        )
        self._inner = inner
        self.failed_exports = 0
        self.shutdown_error: Optional[BaseException] = None

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10_000,
        **kwargs,
    ) -> MetricExportResult:
        try:
            result = self._inner.export(metrics_data, timeout_millis=timeout_millis, **kwargs)
        except Exception:
            self.failed_exports += 1
            raise
        if result is not MetricExportResult.SUCCESS:
            self.failed_exports += 1
        return result

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return self._inner.force_flush(timeout_millis=timeout_millis)

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        try:
            self._inner.shutdown(timeout_millis=timeout_millis, **kwargs)
        except Exception as e:
            self.shutdown_error = e
            raise


class MetricsSession:
    """One OTLP export session for one package.

    Use as a context manager: ``__enter__`` builds the session and
    ``__exit__`` always shuts it down. A shutdown failure raised on exit
    never masks an error already propagating from the body.
    """

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_OTLP_ENDPOINT,
        export_interval_ms: int = 5000,
        flush_timeout_ms: int = 10_000,
        service_name: str = SERVICE_NAME,
        exporter: Optional[MetricExporter] = None,
    ) -> None:
        self._endpoint = endpoint
        self._export_interval_ms = export_interval_ms
        self._flush_timeout_ms = flush_timeout_ms
        self._service_name = service_name
        self._exporter = exporter

        self._tracking: Optional[_TrackingExporter] = None
        self._provider: Optional[MeterProvider] = None
        self._gauge = None
        self.recorded = 0
        self.state = SessionState.UNINITIALIZED

    # ---------------------------------------------- #
    # Context manager
    def __enter__(self) -> "MetricsSession":
        self.build()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.state is SessionState.SHUT_DOWN:
            return
        try:
            self.shutdown()
        except PublishError as e:
            if exc is None:
                raise
            logger.error("Metrics session shutdown failed after an earlier error: %s", e)

    # ---------------------------------------------- #
    def _require(self, action: str, *states: SessionState) -> None:
        if self.state not in states:
            raise RuntimeError(f"Cannot {action} a metrics session in state '{self.state.value}'")

    def build(self) -> None:
        self._require("build", SessionState.UNINITIALIZED)
        try:
            exporter = self._exporter or OTLPMetricExporter(endpoint=self._endpoint)
            self._tracking = _TrackingExporter(exporter)
            reader = PeriodicExportingMetricReader(
                self._tracking,
                export_interval_millis=self._export_interval_ms,
            )
            resource = Resource.create({SERVICE_NAME_KEY: self._service_name})
            self._provider = MeterProvider(
                resource=resource,
                metric_readers=[reader],
                shutdown_on_exit=False,
            )
        except Exception as e:
            raise PublishError(f"could not build OTLP metrics session for {self._endpoint}: {e}", stage="build") from e

        logger.debug("Built metrics session for %s", self._endpoint)
        self.state = SessionState.SESSION_BUILT

    def bind_gauge(self) -> None:
        self._require("bind an instrument to", SessionState.SESSION_BUILT)
        meter = self._provider.get_meter(METER_NAME)
        self._gauge = meter.create_gauge(INSTRUMENT_NAME, description=INSTRUMENT_DESCRIPTION)
        self.state = SessionState.INSTRUMENT_BOUND

    def record(self, points: Sequence[MetricPoint]) -> None:
        self._require("record into", SessionState.INSTRUMENT_BOUND, SessionState.RECORDED)
        for point in points:
            self._gauge.set(point.value, attributes=point.labels)
            logger.debug("Recorded %s=%d %s", point.instrument, point.value, point.labels)
        self.recorded += len(points)
        self.state = SessionState.RECORDED

    def flush(self) -> None:
        self._require("flush", SessionState.RECORDED)
        failed_before = self._tracking.failed_exports
        try:
            ok = self._provider.force_flush(timeout_millis=self._flush_timeout_ms)
        except Exception as e:
            raise PublishError(f"OTLP metrics flush failed: {e}", stage="flush") from e

        if ok is False:
            raise PublishError(
                f"OTLP metrics flush did not complete within {self._flush_timeout_ms}ms",
                stage="flush",
            )
        failed = self._tracking.failed_exports - failed_before
        if failed:
            raise PublishError(
                f"OTLP metrics flush failed: {failed} export(s) "
                f"to {self._endpoint} were not successful",
                stage="flush",
            )
        self.state = SessionState.FLUSHED

    def shutdown(self) -> None:
        if self.state is SessionState.UNINITIALIZED:
            raise RuntimeError("Cannot shut down a metrics session that was never built")
        if self.state is SessionState.SHUT_DOWN:
            raise RuntimeError("Metrics session is already shut down")

        self.state = SessionState.SHUT_DOWN
        failed_before = self._tracking.failed_exports
        try:
            self._provider.shutdown()
        except Exception as e:
            raise PublishError(f"OTLP metrics shutdown failed: {e}", stage="shutdown") from e

        if self._tracking.shutdown_error is not None:
            raise PublishError(
                f"OTLP metrics shutdown failed: {self._tracking.shutdown_error}",
                stage="shutdown",
            )
        if self._tracking.failed_exports > failed_before:
            raise PublishError(
                f"OTLP metrics shutdown failed: final export to {self._endpoint} was not successful",
                stage="shutdown",
            )
        logger.debug("Metrics session for %s shut down", self._endpoint)
