"""DesiDub scraper (Kiranime WordPress theme, Hindi/multi-audio dubs)."""

import base64
import binascii
import json
import logging
import re
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from animegate.models import (
    CatalogItem, EpisodePage, EpisodeRef, HomePage, HomeSection,
    Pagination, SearchResult, Season, SeriesDetails, ServerDescriptor
)
from animegate.scrapers.base import (
    FetchError, Scraper, attr_of, clean_text, image_of, slug_from_url, soup_of, text_of
)

log = logging.getLogger(__name__)

MAIN_URL = "https://www.desidubanime.me"

AUDIO_KEYWORDS = [
    ("multi", "Multi"),
    ("hindi", "Hindi"),
    ("eng", "English"),
    ("tamil", "Tamil"),
    ("telugu", "Telugu"),
]

# Tried in order until one yields cards.
SEARCH_SELECTORS = [
    ".kira-grid > div",
    ".kira-grid-listing > div",
    ".search-results > div",
    ".anime-list > div",
    "article.anime-card",
    ".grid-anime-auto > div",
]

_BG_IMAGE_RE = re.compile(r"url\(['\"]?([^'\")]+)['\"]?\)")
_FIRST_PAGE_RE = re.compile(r"var\s+firstPage\s*=\s*({[^}]+})")
_IFRAME_SRC_RE = re.compile(r"src=['\"]([^'\"]+)['\"]")


def detect_audio(text: str) -> list[str]:
    lower = text.lower()
    return [label for keyword, label in AUDIO_KEYWORDS if keyword in lower]


def _b64(value: str) -> str:
    value = value.strip()
    return base64.b64decode(value + "=" * (-len(value) % 4)).decode("utf-8", errors="replace").strip()


def decode_server(encoded: str) -> Optional[tuple[str, str]]:
    """Decode a ``base64(name):base64(url-or-iframe)`` player entry."""
    if ":" not in encoded:
        return None
    name_b64, url_b64 = encoded.split(":", 1)
    try:
        name, url = _b64(name_b64), _b64(url_b64)
    except (binascii.Error, ValueError):
        return None
    if "<iframe" in url or "src=" in url:
        m = _IFRAME_SRC_RE.search(url)
        if m:
            url = m.group(1)
    return (name, url) if url else None


def parse_card(el) -> Optional[CatalogItem]:
    a = el if el.name == "a" else el.find("a")
    href = a.get("href") if a else None
    if not href:
        return None

    title = clean_text(
        text_of(el, "span[data-en-title]")
        or text_of(el, "h3, h2, h4")
        or attr_of(el, "[title]", "title")
        or text_of(el, "span[data-nt-title]")
        or el.get_text(" ")
    )
    if not title:
        return None

    poster = image_of(el)
    if not poster:
        styled = el.select_one("[style*='background-image']")
        m = _BG_IMAGE_RE.search(styled.get("style", "")) if styled else None
        poster = m.group(1) if m else None

    return CatalogItem(
        id=slug_from_url(href),
        title=title,
        url=href,
        poster=poster,
        type=text_of(el, "span.uppercase") or "TV",
        episodes=text_of(el, ".bg-accent-3") or text_of(el, ".episode-number") or None,
        languages=detect_audio(el.get_text(" ")),
    )


def parse_cards(root, selector: str) -> list[CatalogItem]:
    items = []
    for el in root.select(selector):
        card = parse_card(el)
        if card:
            items.append(card)
    return items


def extract_pagination(html: str, soup: BeautifulSoup) -> Pagination:
    current, total = 1, 1
    m = _FIRST_PAGE_RE.search(html)
    if m:
        try:
            total = int(json.loads(m.group(1)).get("pages") or 1)
        except (ValueError, TypeError):
            total = 1

    current_text = text_of(soup, ".page-numbers.current")
    if current_text.isdigit():
        current = int(current_text)

    if total == 1:
        numbers = [
            clean_text(a.get_text()) for a in soup.select(".page-numbers")
            if not {"next", "dots", "prev"} & set(a.get("class") or [])
        ]
        if numbers and numbers[-1].isdigit():
            total = int(numbers[-1])

    return Pagination(current_page=current, has_next_page=current < total, total_pages=total)


class DesiDubScraper(Scraper):
    """DesiDub catalog scraper."""

    base_url = MAIN_URL
    supports_filters = True

    @property
    def name(self) -> str:
        return "DesiDub"

    def _client_kwargs(self) -> dict:
        if self.config.desidub_proxy:
            return {"proxy": self.config.desidub_proxy}
        return {}

    def _ajax_items(self, data) -> list[CatalogItem]:
        if isinstance(data, dict) and data.get("html"):
            return parse_cards(soup_of(data["html"]), "a[href]")

        rows = data if isinstance(data, list) else (data.get("results") or []) if isinstance(data, dict) else []
        items = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            url = row.get("url") or row.get("link") or row.get("permalink") or ""
            title = clean_text(row.get("title") or row.get("name"))
            if url and title:
                items.append(CatalogItem(
                    id=slug_from_url(url),
                    title=title,
                    url=url,
                    poster=row.get("image") or row.get("thumbnail") or row.get("img"),
                    type=row.get("type") or None,
                    year=row.get("year") or None,
                ))
        return items

    async def _ajax_search(self, client, query: str) -> list[CatalogItem]:
        data = await self.fetch_json(
            client, f"/wp-admin/admin-ajax.php?action=ajax_search&keyword={quote(query)}"
        )
        return self._ajax_items(data)

    # ===== HOME =====

    async def home(self) -> HomePage:
        """Fetch landing page sections."""
        async with self.client() as client:
            soup = await self.fetch_html(client, "/")

        sections: list[HomeSection] = []

        spotlight = []
        for slide in soup.select(".swiper-spotlight .swiper-slide"):
            content = slide.select_one(".container") or slide
            title = text_of(content, "h2")
            href = attr_of(content, "a", "href")
            if title and href:
                spotlight.append(CatalogItem(
                    id=slug_from_url(href),
                    title=title,
                    url=href,
                    poster=attr_of(slide, "img.image-background", "data-src", "src"),
                    type=text_of(content, ".uppercase.bg-accent-3") or "TV",
                ))
        if spotlight:
            sections.append(HomeSection(key="spotlight", title="Spotlight", items=spotlight))

        trending = parse_cards(soup, ".swiper-trending .swiper-slide")
        if trending:
            sections.append(HomeSection(key="trending", title="Trending", items=trending))

        for sec in soup.select("section.mbe-6"):
            title = text_of(sec, "h2")
            if not title or "Genre" in title:
                continue
            items = parse_cards(sec, ".kira-grid-listing > div, .kira-grid > div")
            if items:
                key = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
                sections.append(HomeSection(key=key, title=title, items=items))

        if not sections:
            self.note_empty("home", "swiper-spotlight/swiper-trending/section.mbe-6")
            items = parse_cards(soup, ".kira-grid > div, .grid-anime-auto > div")
            if items:
                sections.append(HomeSection(key="latest", title="Latest", items=items))

        return HomePage(sections=sections)

    # ===== SEARCH =====

    async def search(
        self,
        query: str,
        page: int = 1,
        *,
        year: Optional[str] = None,
        season: Optional[str] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None,
        genres: Optional[list[str]] = None,
        statuses: Optional[list[str]] = None,
        types: Optional[list[str]] = None,
    ) -> SearchResult:
        """Search with optional filters.

        A plain keyword search on page one tries the AJAX endpoint first and
        falls back to the ``/search/`` results page.
        """
        async with self.client() as client:
            if query and page <= 1 and not (genres or statuses or types):
                items = await self._try_ajax_search(client, query)
                if items:
                    return SearchResult(
                        results=items,
                        pagination=Pagination(current_page=1, has_next_page=False, total_pages=1),
                    )

            params: list[tuple[str, str]] = [("asp", "1")]
            if query:
                params.append(("s_keyword", query))
            if page > 1:
                params.append(("page", str(page)))
            for key, value in (("s_year", year), ("s_season", season), ("s_orderby", sort), ("s_order", order)):
                if value:
                    params.append((key, value))
            for key, values in (("s_genre[]", genres), ("s_status[]", statuses), ("s_type[]", types)):
                params.extend((key, v) for v in values or [])

            res = await self._request(client, "GET", "/search/", params=params)

        soup = soup_of(res.text)
        results: list[CatalogItem] = []
        for selector in SEARCH_SELECTORS:
            results = parse_cards(soup, selector)
            if results:
                break
        else:
            self.note_empty("search", ", ".join(SEARCH_SELECTORS))

        pagination = extract_pagination(res.text, soup)
        if page > 1 and pagination.current_page == 1:
            pagination.current_page = page
            pagination.has_next_page = page < (pagination.total_pages or page)
        return SearchResult(results=results, pagination=pagination)

    async def _try_ajax_search(self, client, query: str) -> list[CatalogItem]:
        """AJAX search; an error there only means falling back to HTML."""
        try:
            return await self._ajax_search(client, query)
        except FetchError as e:
            log.info("[%s] AJAX search unavailable, using results page: %s", self.name, e)
            return []

    async def _suggest(self, query: str) -> list[CatalogItem]:
        async with self.client(timeout=self.config.suggest_timeout) as client:
            items = await self._try_ajax_search(client, query)
        if items:
            return items
        return (await self.search(query)).results

    # ===== DETAILS =====

    async def details(self, ref: str) -> SeriesDetails:
        """Fetch series details. Episodes are listed newest first on the page."""
        url = self.url(ref if "/" in ref else f"/anime/{ref}/")
        async with self.client() as client:
            soup = await self.fetch_html(client, url)

        episodes = []
        for slide in soup.select(".swiper-episode-anime .swiper-slide"):
            href = attr_of(slide, "a", "href")
            if not href:
                continue
            label = clean_text(slide.get_text(" "))
            m = re.search(r"(\d+)", label)
            episodes.append(EpisodeRef(
                episode_id=slug_from_url(href),
                number=m.group(1) if m else "0",
                title=label or None,
                url=href,
                thumbnail=attr_of(slide, "img", "data-src", "src"),
            ))
        episodes.reverse()
        if not episodes:
            self.note_empty("details", ".swiper-episode-anime .swiper-slide")

        genres = [
            clean_text(a.get_text())
            for li in soup.select("li")
            if "Genre" in text_of(li, "span") or clean_text(li.get_text()).startswith("Genre")
            for a in li.select("a")
        ]

        return SeriesDetails(
            id=slug_from_url(url),
            title=(
                text_of(soup, "span[data-en-title].anime")
                or text_of(soup, "span[data-nt-title].anime")
                or text_of(soup, "h1")
                or "Unknown"
            ),
            poster=attr_of(soup, ".anime-image img", "data-src", "src"),
            description=text_of(soup, ".anime-synopsis") or None,
            seasons=[Season(season="1", episodes=episodes)] if episodes else [],
            genres=genres,
            recommendations=parse_cards(soup, ".grid-anime-auto > div"),
        )

    # ===== SERVERS =====

    async def episode(self, ref: str) -> EpisodePage:
        """Server list for an episode; entries carry base64 name/url pairs."""
        url = self.url(ref if "/" in ref else f"/watch/{ref}/")
        async with self.client() as client:
            soup = await self.fetch_html(client, url)

        servers = []
        for idx, span in enumerate(soup.select(".player-selection span[data-embed-id]")):
            decoded = decode_server(span.get("data-embed-id", ""))
            if not decoded:
                continue
            name, embed = decoded
            languages = detect_audio(name)
            servers.append(ServerDescriptor(
                id=str(idx),
                name=name,
                language=languages[0] if languages else None,
                category="dub",
                embed_url=embed,
            ))

        if not servers:
            iframe = attr_of(soup, "iframe", "src", "data-src")
            if iframe:
                servers.append(ServerDescriptor(id="0", name="Default", category="dub", embed_url=iframe))
            else:
                self.note_empty("episode", ".player-selection span[data-embed-id]")

        return EpisodePage(title=text_of(soup, "h1") or slug_from_url(url), servers=servers)

    async def listing(self, kind: str, value: str, page: int = 1) -> SearchResult:
        """A-Z, genre and tag pages."""
        async with self.client() as client:
            if kind == "az":
                res = await self._request(client, "GET", "/az-list/", params={"letter": value, "page": page})
            else:
                res = await self._request(client, "GET", f"/{kind}/{value}/page/{page}/")

        soup = soup_of(res.text)
        return SearchResult(
            results=parse_cards(soup, ".kira-grid > div, .grid-anime-auto > div"),
            pagination=extract_pagination(res.text, soup),
        )
