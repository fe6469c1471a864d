"""
npm versions fetcher - downloads the "Versions" tab of a package page.
"""

import logging
from typing import Optional

from core.config import DEFAULT_REGISTRY_URL, DEFAULT_USER_AGENT
from core.interfaces import Fetcher
from core.models import RawItem
from core.infra.http import HttpClient


logger = logging.getLogger(__name__)


def versions_url(package: str, registry_url: str = DEFAULT_REGISTRY_URL) -> str:
    """Canonical URL of the versions view of *package*."""
    return f"{registry_url}/package/{package}?activeTab=versions"


class NpmVersionsFetcher(Fetcher):
    """Fetches the versions page of an npm package, one request per call."""

    name = "NpmVersionsFetcher"

    def __init__(
        self,
        *,
        registry_url: str = DEFAULT_REGISTRY_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        http: Optional[HttpClient] = None,
    ):
        self._registry_url = registry_url.rstrip("/")
        self._http = http or HttpClient(
            timeout=timeout,
            default_headers={"User-Agent": user_agent},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        await self._http.close()

    async def fetch(self, package: str) -> RawItem:
        url = versions_url(package, self._registry_url)
        logger.info(f"Fetching {url}")

        payload = await self._http.get_bytes(url)
        logger.info(f"Downloaded versions page for {package}: {len(payload)} bytes")

        return RawItem(source="npm.versions", package=package, payload=payload)
