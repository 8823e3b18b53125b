"""
Destination resolution.

Either builds the subtest URLs for an explicitly configured server, or asks
the M-Lab locate service (``async with LocateAPI(...) as api: ...``) for the
nearest healthy machine and uses the access-token URLs it hands back.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import aiohttp

from .config import Settings
from .constants import DOWNLOAD_PATH, LIBRARY_NAME, LIBRARY_VERSION, UPLOAD_PATH
from .errors import ResolutionError
from .measurement import DOWNLOAD, UPLOAD

LOGGER = logging.getLogger(__name__)

_LOCATE_TIMEOUT = aiohttp.ClientTimeout(total=10, connect=5)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerURLs:
    """The two endpoints a test runs against."""

    download_url: str
    upload_url: str

    def url_for(self, test: str) -> str:
        if test == DOWNLOAD:
            return self.download_url
        if test == UPLOAD:
            return self.upload_url
        raise ValueError(f"unknown subtest: {test}")


@dataclass
class Server:
    """One result returned by the locate service."""

    machine: str
    city: str = ""
    country: str = ""
    urls: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> Server:
        location = data.get("location")
        if not isinstance(location, dict):
            location = {}
        urls = data.get("urls")
        return cls(
            machine=data.get("machine", ""),
            city=location.get("city", ""),
            country=location.get("country", ""),
            urls=dict(urls) if isinstance(urls, dict) else {},
        )

    def server_urls(self, scheme: str) -> ServerURLs:
        try:
            return ServerURLs(
                download_url=self.urls[f"{scheme}://{DOWNLOAD_PATH}"],
                upload_url=self.urls[f"{scheme}://{UPLOAD_PATH}"],
            )
        except KeyError as exc:
            raise ResolutionError(
                f"server {self.machine} has no {scheme} URL for {exc.args[0]}"
            ) from exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine": self.machine,
            "city": self.city,
            "country": self.country,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def query_params(metadata: Mapping[str, str]) -> Dict[str, str]:
    """User metadata plus the library identity, as a fresh dict."""
    params = dict(metadata)
    params["client_library_name"] = LIBRARY_NAME
    params["client_library_version"] = LIBRARY_VERSION
    return params


def build_urls(server: str, scheme: str, metadata: Mapping[str, str]) -> ServerURLs:
    """Subtest URLs for an explicitly chosen ``host[:port]``."""
    query = urlencode(query_params(metadata))
    return ServerURLs(
        download_url=f"{scheme}://{server}{DOWNLOAD_PATH}?{query}",
        upload_url=f"{scheme}://{server}{UPLOAD_PATH}?{query}",
    )


# ---------------------------------------------------------------------------
# Locate API client
# ---------------------------------------------------------------------------

class LocateAPI:
    """Async context-manager wrapping the locate service."""

    def __init__(self, service_url: str) -> None:
        self.service_url = service_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> LocateAPI:
        self._session = aiohttp.ClientSession(
            headers={"User-Agent": f"{LIBRARY_NAME}/{LIBRARY_VERSION}"},
            timeout=_LOCATE_TIMEOUT,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "LocateAPI must be used as an async context manager "
                "(async with LocateAPI(url) as api: ...)"
            )
        return self._session

    async def nearest(self, metadata: Mapping[str, str]) -> List[Server]:
        """Return the servers proposed by the locate service, best first."""
        session = self._ensure_session()

        async with session.get(self.service_url, params=query_params(metadata)) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not all(isinstance(r, dict) for r in results):
            raise ResolutionError(
                f"could not understand response from {self.service_url}: {data!r}"
            )
        return [Server.from_dict(r) for r in results]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

async def discover_server_urls(
    settings: Settings,
    on_discovery: Callable[[str], None],
    on_chosen: Callable[[Server], None],
) -> ServerURLs:
    """Resolve the download/upload URLs.  Raises ``ResolutionError``."""
    if settings.server:
        urls = build_urls(settings.server, settings.scheme, settings.metadata)
        LOGGER.info("using configured server %s", settings.server)
        return urls

    on_discovery(settings.service_url)
    try:
        async with LocateAPI(settings.service_url) as api:
            servers = await api.nearest(settings.metadata)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        raise ResolutionError(f"locate request failed: {exc}") from exc

    if not servers:
        raise ResolutionError("locate service returned no servers")

    # The locate service already randomises machines within a metro, so the
    # first result is the one to use.
    choice = servers[0]
    LOGGER.info("selected %s (%s, %s)", choice.machine, choice.city, choice.country)
    on_chosen(choice)
    return choice.server_urls(settings.scheme)
