"""
http.py – Async HTTP client built on *aiohttp* with per-instance default
          headers and transport errors mapped to :class:`FetchError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional

import aiohttp

from core.exceptions import FetchError

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * global & per-request headers (keeps user-agent in one place)
    * a total request timeout
    * a single attempt per request; every failure surfaces as ``FetchError``
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    # ---------------------------------------------- #
    # Public helpers
    async def get_bytes(self, url: str, **kwargs) -> bytes:
        """GET *url* and return the raw body; decoding is left to the caller."""
        session = await self._ensure_session()
        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))

        try:
            async with session.get(url, **kwargs) as resp:
                resp.raise_for_status()
                return await resp.read()
        except aiohttp.ClientResponseError as e:
            logger.error("HTTP GET %s failed with status %d", url, e.status)
            raise FetchError(f"GET {url} returned {e.status}", url=url, status=e.status) from e
        except aiohttp.ClientError as e:
            logger.error("HTTP GET %s failed: %s", url, e)
            raise FetchError(f"GET {url} failed: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            logger.error("HTTP GET %s timed out after %.1fs", url, self._timeout)
            raise FetchError(f"GET {url} timed out", url=url) from e
