"""
npm downloads plugin - versions page fetcher, parser and metrics sinks.
"""

from .fetcher import NpmVersionsFetcher
from .parser import VersionsParser, extract_records
from .sinks import LogSink, OtlpMetricsSink, publish

__all__ = [
    "NpmVersionsFetcher",
    "VersionsParser",
    "extract_records",
    "LogSink",
    "OtlpMetricsSink",
    "publish",
]
