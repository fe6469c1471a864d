"""
Exception hierarchy for the exporter.

Every stage raises a subclass of :class:`ExporterError`; the entry point
catches the base class, logs it and exits non-zero.
"""

from __future__ import annotations

from typing import Optional


class ExporterError(Exception):
    """Base exception for the exporter."""


class ConfigError(ExporterError):
    """Configuration is missing or invalid."""


class FetchError(ExporterError):
    """The registry page could not be retrieved."""

    def __init__(self, message: str, *, url: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ExtractError(ExporterError):
    """The fetched page did not have the expected structure or values.

    Carries enough context to diagnose a markup change on the registry side:
    the selector that was evaluated, the record field being built, the
    1-based row index and the offending raw text.
    """

    def __init__(
        self,
        reason: str,
        *,
        selector: Optional[str] = None,
        field: Optional[str] = None,
        row: Optional[int] = None,
        raw: Optional[str] = None,
    ):
        self.reason = reason
        self.selector = selector
        self.field = field
        self.row = row
        self.raw = raw
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.reason]
        if self.row is not None:
            parts.append(f"row={self.row}")
        if self.field:
            parts.append(f"field={self.field}")
        if self.selector:
            parts.append(f"selector={self.selector!r}")
        if self.raw is not None:
            parts.append(f"raw={self.raw!r}")
        return " | ".join(parts)


class PublishError(ExporterError):
    """A metrics session step failed.

    ``stage`` is one of ``build``, ``flush`` or ``shutdown`` so that a failed
    delivery can be told apart from a failed cleanup.
    """

    def __init__(self, message: str, *, stage: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
