"""Shared fixtures: clean environment, versions page builder, capturing OTLP exporter, fake registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from opentelemetry.sdk.metrics.export import MetricExporter, MetricExportResult, MetricsData

from core.models import INSTRUMENT_NAME

# =============================================================================
# Environment
# =============================================================================

EXPORTER_ENV_VARS = (
    "PACKAGES",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "EXPORT_INTERVAL_MS",
    "NPM_REGISTRY_URL",
    "NPM_USER_AGENT",
    "HTTP_TIMEOUT",
    "EMPTY_RESULT",
    "LOG_LEVEL",
    "EXPORTER_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without exporter settings in the environment."""
    for name in EXPORTER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# =============================================================================
# Versions page
# =============================================================================


def build_versions_page(rows: Iterable[Tuple[str, str]], *, prefix_rows: str = "") -> str:
    """Markup shaped like npm's versions tab.

    The wrapper div holds: heading, current-tags table, heading, paragraph,
    version history table; the last one is the 5th child.
    """
    body = "\n".join(
        f'<tr><td><a href="/package/pkg/v/{version}">{version}</a></td>'
        f"<td>{downloads}</td><td>3 days ago</td></tr>"
        for version, downloads in rows
    )
    return f"""<!DOCTYPE html>
<html>
<head><title>pkg - npm</title></head>
<body>
  <main>
    <div id="tabpanel-versions" role="tabpanel">
      <div>
        <h3>Current Tags</h3>
        <table>
          <tbody>
            <tr><td><a href="/package/pkg/v/9.9.9">9.9.9</a></td><td>99,999</td><td>latest</td></tr>
          </tbody>
        </table>
        <h3>Version History</h3>
        <p>Show deprecated versions</p>
        <table>
          <thead><tr><th>Version</th><th>Downloads (Last 7 Days)</th><th>Published</th></tr></thead>
          <tbody>
            {prefix_rows}{body}
          </tbody>
        </table>
      </div>
    </div>
  </main>
</body>
</html>"""


@pytest.fixture
def versions_page() -> Callable[..., str]:
    return build_versions_page


# =============================================================================
# Metrics exporter
# =============================================================================


class CapturingExporter(MetricExporter):
    """In-process exporter that keeps every MetricsData it receives."""

    def __init__(
        self,
        result: MetricExportResult = MetricExportResult.SUCCESS,
        shutdown_error: Optional[Exception] = None,
        results: Iterable[MetricExportResult] = (),
    ) -> None:
        super().__init__()
        self.result = result
        # answered first, in order, before falling back to ``result``
        self.results = list(results)
        self.shutdown_error = shutdown_error
        self.exports: List[MetricsData] = []
        self.shutdown_calls = 0

    def export(self, metrics_data: MetricsData, timeout_millis: float = 10_000, **kwargs) -> MetricExportResult:
        self.exports.append(metrics_data)
        if self.results:
            return self.results.pop(0)
        return self.result

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self.shutdown_calls += 1
        if self.shutdown_error is not None:
            raise self.shutdown_error

    def first_batch(self) -> List[Dict[str, Any]]:
        """Data points of the first export that carried any, as plain dicts."""
        for data in self.exports:
            points = [
                {"attributes": dict(point.attributes), "value": point.value}
                for resource_metrics in data.resource_metrics
                for scope_metrics in resource_metrics.scope_metrics
                for metric in scope_metrics.metrics
                if metric.name == INSTRUMENT_NAME
                for point in metric.data.data_points
            ]
            if points:
                return points
        return []

    def resource_attributes(self) -> Dict[str, Any]:
        for data in self.exports:
            for resource_metrics in data.resource_metrics:
                return dict(resource_metrics.resource.attributes)
        return {}

    def metric_descriptions(self) -> Dict[str, str]:
        return {
            metric.name: metric.description
            for data in self.exports
            for resource_metrics in data.resource_metrics
            for scope_metrics in resource_metrics.scope_metrics
            for metric in scope_metrics.metrics
        }


@pytest.fixture
def exporter() -> CapturingExporter:
    return CapturingExporter()


@pytest.fixture
def exporter_factory() -> Callable[..., CapturingExporter]:
    return CapturingExporter


# =============================================================================
# Fake registry
# =============================================================================


@dataclass
class FakeRegistry:
    url: str
    pages: Dict[str, Union[str, bytes]] = field(default_factory=dict)
    requests: List[Dict[str, Any]] = field(default_factory=list)


@pytest_asyncio.fixture
async def registry():
    """Local aiohttp server serving ``/package/{name}`` from ``pages``.

    A ``bytes`` page is sent as-is, so tests can serve bodies that do not
    match the declared charset.
    """
    state = FakeRegistry(url="")

    async def handler(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        state.requests.append(
            {
                "name": name,
                "query": dict(request.query),
                "user_agent": request.headers.get("User-Agent"),
            }
        )
        if name not in state.pages:
            raise web.HTTPNotFound()
        page = state.pages[name]
        if isinstance(page, bytes):
            return web.Response(body=page, content_type="text/html", charset="utf-8")
        return web.Response(text=page, content_type="text/html")

    app = web.Application()
    app.router.add_get("/package/{name:.+}", handler)

    server = TestServer(app)
    await server.start_server()
    state.url = str(server.make_url("/")).rstrip("/")
    try:
        yield state
    finally:
        await server.close()
