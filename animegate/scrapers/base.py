"""Abstract base class for catalog scrapers."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

from animegate.config import Config, get_config
from animegate.models import (
    CatalogItem, EpisodePage, HomePage, SearchResult, SeriesDetails, ServerDescriptor
)

log = logging.getLogger(__name__)

SUGGESTION_LIMIT = 5


class FetchError(Exception):
    """Transport failure: DNS, connect, timeout or an unusable non-2xx."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        super().__init__(f"{reason} ({url})")
        self.url = url
        self.reason = reason
        self.status = status


# ===== HTML HELPERS =====

def clean_text(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def text_of(root: Any, selector: str) -> str:
    """Cleaned text of the first match, or ""."""
    el = root.select_one(selector) if root is not None else None
    return clean_text(el.get_text(" ")) if el else ""


def attr_of(root: Any, selector: str, *names: str) -> Optional[str]:
    """First non-empty attribute among ``names`` on the first match."""
    el = root.select_one(selector) if root is not None else None
    if not el:
        return None
    for name in names:
        value = el.get(name)
        if value:
            return str(value).strip()
    return None


def image_of(root: Any, selector: str = "img") -> Optional[str]:
    return attr_of(root, selector, "data-src", "src", "data-lazy-src")


def slug_from_url(url: Optional[str]) -> str:
    """Last path segment of a URL, without query string."""
    if not url:
        return ""
    path = urlparse(url).path if "://" in url else url.split("?")[0]
    parts = [p for p in path.split("/") if p]
    return parts[-1] if parts else ""


def abs_url(base: str, href: Optional[str]) -> str:
    if not href:
        return ""
    try:
        return urljoin(base, href)
    except ValueError:
        return href


def group_from_class(el: Tag, prefix: str) -> Optional[str]:
    """Token after ``prefix`` on the nearest ancestor carrying such a class.

    ``<div class="ps_-block servers-dub">`` with prefix ``servers-`` gives "dub".
    """
    node = el
    while isinstance(node, Tag):
        for cls in node.get("class") or []:
            if cls.startswith(prefix) and len(cls) > len(prefix):
                return cls[len(prefix):]
        node = node.parent
    return None


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


# ===== BASE CLASS =====

class Scraper(ABC):
    """Base class for all catalog scrapers.

    Instances hold configuration only. Every operation opens its own HTTP
    client, so one instance can serve any number of concurrent calls.
    """

    base_url: str = ""
    extra_headers: dict[str, str] = {}
    # search() accepts year/season/sort/order/genres/statuses/types
    supports_filters: bool = False

    def __init__(self, config: Config | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config or get_config()
        self._transport = transport

    @property
    @abstractmethod
    def name(self) -> str:
        """Scraper name for display."""
        ...

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": self.base_url + "/",
            **self.extra_headers,
        }

    def _client_kwargs(self) -> dict:
        return {}

    def client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.headers,
            timeout=timeout or self.config.request_timeout,
            follow_redirects=True,
            transport=self._transport,
            **self._client_kwargs(),
        )

    def url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        url = self.url(url)
        try:
            res = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        if res.status_code >= 400:
            raise FetchError(url, f"HTTP {res.status_code}", res.status_code)
        return res

    async def fetch_html(self, client: httpx.AsyncClient, url: str, **kwargs) -> BeautifulSoup:
        res = await self._request(client, "GET", url, **kwargs)
        return soup_of(res.text)

    async def fetch_json(self, client: httpx.AsyncClient, url: str, method: str = "GET", **kwargs) -> Any:
        """Fetch a JSON endpoint; non-JSON bodies come back as ``{"html": text}``."""
        headers = {
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
            **kwargs.pop("headers", {}),
        }
        res = await self._request(client, method, url, headers=headers, **kwargs)
        try:
            return res.json()
        except ValueError:
            return {"html": res.text}

    def note_empty(self, operation: str, selectors: str) -> None:
        """Structural zero-match. Logged so markup drift shows up in the logs."""
        log.warning("[%s] %s: nothing matched %r", self.name, operation, selectors)

    # ===== CAPABILITIES =====

    @abstractmethod
    async def home(self) -> HomePage:
        """Fetch landing page sections."""
        ...

    @abstractmethod
    async def search(self, query: str, page: int = 1) -> SearchResult:
        """Search for content."""
        ...

    @abstractmethod
    async def _suggest(self, query: str) -> list[CatalogItem]:
        ...

    async def suggestions(self, query: str) -> list[CatalogItem]:
        """Live-typing suggestions. Never raises; gives up after suggest_timeout."""
        query = query.strip()
        if len(query) < 2:
            return []
        try:
            items = await asyncio.wait_for(self._suggest(query), timeout=self.config.suggest_timeout)
        except asyncio.TimeoutError:
            log.info("[%s] suggestions for %r timed out", self.name, query)
            return []
        except FetchError as e:
            log.info("[%s] suggestions for %r failed: %s", self.name, query, e)
            return []
        return items[:SUGGESTION_LIMIT]

    @abstractmethod
    async def details(self, ref: str) -> SeriesDetails:
        """Fetch series details with per-season episode lists."""
        ...

    @abstractmethod
    async def episode(self, ref: str) -> EpisodePage:
        """Fetch the server list of one episode."""
        ...

    async def resolve_server(self, server: ServerDescriptor) -> Optional[str]:
        """Embed URL for a server, fetching it when only an opaque id is known."""
        return server.embed_url

    async def listing(self, kind: str, value: str, page: int = 1) -> SearchResult:
        """Category listing (genre, tag, letter). Empty where unsupported."""
        return SearchResult()
