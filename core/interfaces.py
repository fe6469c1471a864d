"""
Core interfaces for the exporter pipeline.

A run is ``Fetcher -> Parser -> Sink`` for every configured package. Stages
that need resources implement ``__aenter__``/``__aexit__``; the orchestrator
enters them once per run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import RawItem, VersionTable


class Fetcher(ABC):
    """Abstract base class for document fetchers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this fetcher."""
        pass

    @abstractmethod
    async def fetch(self, package: str) -> RawItem:
        """Fetch the raw document for one package."""
        pass


class Parser(ABC):
    """Abstract base class for parsers turning a RawItem into a VersionTable."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this parser."""
        pass

    @abstractmethod
    async def parse(self, item: RawItem) -> VersionTable:
        """Parse a raw document."""
        pass


class Sink(ABC):
    """Abstract base class for data sinks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def handle(self, table: VersionTable) -> None:
        """Handle the extracted table of one package."""
        pass
