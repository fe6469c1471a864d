"""
Core data models for the exporter.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

# OTLP integer gauge points (``as_int``) are signed 64-bit.
INT64_MAX = 2 ** 63 - 1

INSTRUMENT_NAME = "npm.package.downloads"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class RawItem(BaseModel):
    """Raw document fetched from the registry."""
    source: str
    package: str
    payload: bytes
    fetched_at: datetime = Field(default_factory=_utcnow)


class Record(BaseModel):
    """One row of the versions table."""
    model_config = ConfigDict(frozen=True)

    version: str = Field(min_length=1)
    downloads: int = Field(ge=0, le=INT64_MAX)


class VersionTable(BaseModel):
    """All records extracted for one package, in document order."""
    package: str
    records: List[Record] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utcnow)


class MetricPoint(BaseModel):
    """A single gauge observation labelled with package and version."""
    model_config = ConfigDict(frozen=True)

    instrument: str = INSTRUMENT_NAME
    value: int = Field(ge=0, le=INT64_MAX)
    labels: Dict[str, str]

    @classmethod
    def from_record(cls, package: str, record: Record) -> "MetricPoint":
        return cls(
            value=record.downloads,
            labels={"package": package, "version": record.version},
        )
