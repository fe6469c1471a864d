"""
Pipeline orchestrator: Fetch → Parse → Sink for every configured package.
"""

import logging
from contextlib import AsyncExitStack
from typing import Iterable

from .config import Settings
from .interfaces import Fetcher, Parser, Sink

logger = logging.getLogger(__name__)


async def run_package(package: str, fetcher: Fetcher, parser: Parser, sink: Sink) -> int:
    """Run the full pipeline for one package and return the record count."""
    raw_item = await fetcher.fetch(package)
    table = await parser.parse(raw_item)
    await sink.handle(table)
    return len(table.records)


async def run_pipeline(packages: Iterable[str], fetcher: Fetcher, parser: Parser, sink: Sink) -> int:
    """Process packages one at a time; the first failure aborts the run.

    Stages supporting async context management are entered once for the whole
    run and always released, whatever happens to the packages.
    """
    total = 0
    async with AsyncExitStack() as stack:
        for stage in (fetcher, parser, sink):
            if hasattr(stage, "__aenter__"):
                await stack.enter_async_context(stage)

        for package in packages:
            logger.info(f"Starting package: {package}")
            try:
                count = await run_package(package, fetcher, parser, sink)
            except Exception as e:
                logger.error(f"Package {package} failed: {e}")
                raise
            total += count
            logger.info(f"Package completed: {package} ({count} records)")

    return total


def build_stages(settings: Settings, *, dry_run: bool = False, exporter=None):
    """Create the fetcher, parser and sink described by *settings*."""
    # Imported here so that core does not depend on plugins at import time
    from plugins.npm_downloads import LogSink, NpmVersionsFetcher, OtlpMetricsSink, VersionsParser

    fetcher = NpmVersionsFetcher(
        registry_url=settings.registry_url,
        user_agent=settings.user_agent,
        timeout=settings.http_timeout,
    )
    parser = VersionsParser(empty_result=settings.empty_result)
    sink: Sink
    if dry_run:
        sink = LogSink()
    else:
        sink = OtlpMetricsSink(
            endpoint=settings.otlp_endpoint,
            export_interval_ms=settings.export_interval_ms,
            exporter=exporter,
        )
    return fetcher, parser, sink


async def run_all(settings: Settings, *, dry_run: bool = False, exporter=None) -> int:
    """Run every configured package using the stages built from *settings*."""
    fetcher, parser, sink = build_stages(settings, dry_run=dry_run, exporter=exporter)
    logger.info(f"Running {len(settings.packages)} package(s) with sink {sink.name}")
    return await run_pipeline(settings.packages, fetcher, parser, sink)
