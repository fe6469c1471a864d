"""npm_downloads.parser – versions page HTML → :class:`~core.models.Record` list.

The registry controls the markup, so every structural assumption lives in
:data:`VERSIONS_TABLE_QUERY`. When npm changes its page only that query has
to be updated; the row-to-record conversion stays as it is.

Extraction is fail-closed: the first row that cannot be converted aborts the
whole page with an :class:`~core.exceptions.ExtractError`. Returning the rows
that did parse would silently under-report a package's versions.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from core.exceptions import ExtractError
from core.interfaces import Parser
from core.models import INT64_MAX, RawItem, Record, VersionTable

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"[0-9]+")


# --------------------------------------------------------------------------- #
# Structural query
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class TableQuery:
    panel: str
    table: str
    rows: str
    version: str
    downloads: str


# The versions table is the second table under the panel's wrapper div,
# 5th child counting the headings and paragraphs around it.
VERSIONS_TABLE_QUERY = TableQuery(
    panel="#tabpanel-versions",
    table="#tabpanel-versions > div > table:nth-child(5)",
    rows=":scope > tbody > tr",
    version="td:nth-child(1) > a",
    downloads="td:nth-child(2)",
)


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #
def parse_downloads(raw: str) -> int:
    """Parse a locale formatted count such as ``"12,345"`` into an int.

    Raises :class:`ValueError` for anything that is not a plain non-negative
    integer once thousands separators are removed, or that does not fit an
    OTLP int64 gauge point.
    """
    normalized = raw.replace(",", "")
    if not _DIGITS.fullmatch(normalized):
        raise ValueError("not a number")
    value = int(normalized)
    if value > INT64_MAX:
        raise ValueError("exceeds int64")
    return value


def select_rows(soup: BeautifulSoup, query: TableQuery = VERSIONS_TABLE_QUERY) -> List[Tag]:
    """Return the version rows, failing if the panel or table is missing."""
    if soup.select_one(query.panel) is None:
        raise ExtractError("versions panel not found", selector=query.panel)

    table = soup.select_one(query.table)
    if table is None:
        raise ExtractError("versions table not found", selector=query.table)

    return table.select(query.rows)


def row_to_record(index: int, row: Tag, query: TableQuery = VERSIONS_TABLE_QUERY) -> Record:
    anchor = row.select_one(query.version)
    if anchor is None:
        raise ExtractError("version cell not found", selector=query.version, field="version", row=index)
    version = anchor.get_text().strip()

    cell = row.select_one(query.downloads)
    if cell is None:
        raise ExtractError("downloads cell not found", selector=query.downloads, field="downloads", row=index)
    raw = cell.get_text().strip()

    try:
        downloads = parse_downloads(raw)
    except ValueError as e:
        raise ExtractError(
            f"failed to parse downloads: {e}",
            selector=query.downloads,
            field="downloads",
            row=index,
            raw=raw,
        ) from e

    try:
        return Record(version=version, downloads=downloads)
    except ValidationError as e:
        raise ExtractError("empty version text", selector=query.version, field="version", row=index, raw=version) from e


def extract_records(html: str, query: TableQuery = VERSIONS_TABLE_QUERY) -> List[Record]:
    """Extract every version row of a versions page, in document order.

    The list comprehension short-circuits on the first failing row; no
    partial result is ever returned.
    """
    soup = BeautifulSoup(html, "html5lib")
    rows = select_rows(soup, query)
    return [row_to_record(i, row, query) for i, row in enumerate(rows, start=1)]


# --------------------------------------------------------------------------- #
# Pipeline stage
# --------------------------------------------------------------------------- #
class VersionsParser(Parser):
    """Pipeline stage 2 / 3 – RawItem → VersionTable."""

    name = "VersionsParser"

    def __init__(self, *, empty_result: str = "warn") -> None:
        if empty_result not in ("warn", "error"):
            raise ValueError(f"empty_result must be 'warn' or 'error', got {empty_result!r}")
        self._empty_result = empty_result

    async def parse(self, item: RawItem) -> VersionTable:
        html = item.payload.decode("utf-8", errors="replace")
        records = extract_records(html)

        if not records:
            if self._empty_result == "error":
                raise ExtractError(
                    "no version rows found",
                    selector=f"{VERSIONS_TABLE_QUERY.table} > tbody > tr",
                )
            logger.warning(
                "No version rows found for %s – the registry markup may have changed", item.package
            )

        logger.info("Parsed %d version records for %s", len(records), item.package)
        return VersionTable(package=item.package, records=records, fetched_at=item.fetched_at)
