"""Satoru scraper (zoro-style site with AJAX episode/server lists)."""

import json
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, quote, urlparse

from bs4 import BeautifulSoup

from animegate.models import (
    CatalogItem, EpisodePage, EpisodeRef, HomePage, HomeSection,
    Pagination, SearchResult, Season, SeriesDetails, ServerDescriptor
)
from animegate.scrapers.base import (
    Scraper, abs_url, attr_of, clean_text, group_from_class, image_of, slug_from_url, soup_of, text_of
)

log = logging.getLogger(__name__)

MAIN_URL = "https://satoru.one"

# server group token -> playback category
CATEGORIES = {"jp": "sub", "sub": "sub", "raw": "raw"}


def _card_id(href: Optional[str]) -> str:
    return slug_from_url(href).split("?")[0]


def _parse_card(el) -> Optional[CatalogItem]:
    href = attr_of(el, ".film-poster-ahref", "href") or attr_of(el, ".film-name a", "href")
    title = text_of(el, ".film-name")
    if not href or not title:
        return None
    languages = [s.get("title") for s in el.select(".tick-dub span") if s.get("title")]
    return CatalogItem(
        id=_card_id(href),
        title=title,
        url=abs_url(MAIN_URL, href),
        poster=image_of(el),
        type=text_of(el, ".fdi-item") or None,
        episodes=text_of(el, ".tick-eps") or text_of(el, ".tick-sub") or None,
        quality=text_of(el, ".tick-quality") or None,
        languages=languages,
    )


def _parse_cards(root, selector: str) -> list[CatalogItem]:
    items = []
    for el in root.select(selector):
        card = _parse_card(el)
        if card:
            items.append(card)
    return items


def _total_pages(soup: BeautifulSoup) -> Optional[int]:
    pages = []
    for a in soup.select(".pagination .page-link[href]"):
        qs = parse_qs(urlparse(a["href"]).query)
        if qs.get("page", [""])[0].isdigit():
            pages.append(int(qs["page"][0]))
    return max(pages) if pages else None


class SatoruScraper(Scraper):
    """Satoru catalog scraper."""

    base_url = MAIN_URL
    extra_headers = {"X-Requested-With": "XMLHttpRequest"}

    @property
    def name(self) -> str:
        return "Satoru"

    # ===== HOME =====

    def _spotlight(self, soup: BeautifulSoup) -> list[CatalogItem]:
        items = []
        for slide in soup.select(".swiper-slide:not(.swiper-slide-duplicate) .deslide-item"):
            href = attr_of(slide, ".btn-primary", "href")
            title = text_of(slide, ".desi-head-title")
            if href and title:
                items.append(CatalogItem(
                    id=slug_from_url(href),
                    title=title,
                    url=self.url(href),
                    poster=image_of(slide, ".film-poster-img"),
                    type=text_of(slide, ".sc-detail .scd-item") or None,
                ))
        return items

    def _trending(self, soup: BeautifulSoup) -> list[CatalogItem]:
        items = []
        for slide in soup.select("#trending-home .swiper-slide:not(.swiper-slide-duplicate)"):
            href = attr_of(slide, ".film-poster", "href")
            title = text_of(slide, ".film-title")
            if href and title:
                items.append(CatalogItem(
                    id=slug_from_url(href),
                    title=title,
                    url=self.url(href),
                    poster=image_of(slide),
                ))
        return items

    def _block(self, soup: BeautifulSoup, heading: str) -> list[CatalogItem]:
        for block in soup.select(".block_area_home"):
            if heading.lower() in text_of(block, ".cat-heading").lower():
                return _parse_cards(block, ".flw-item")
        return []

    def _sidebar(self, soup: BeautifulSoup, selector: str) -> list[CatalogItem]:
        items = []
        for li in soup.select(selector):
            href = attr_of(li, "a", "href")
            title = text_of(li, ".film-name")
            if href and title:
                items.append(CatalogItem(
                    id=slug_from_url(href),
                    title=title,
                    url=self.url(href),
                    poster=image_of(li),
                ))
        return items

    def _genres(self, soup: BeautifulSoup) -> list[CatalogItem]:
        return [
            CatalogItem(id=slug_from_url(a.get("href")), title=clean_text(a.get_text()), url=self.url(a.get("href", "")), type="genre")
            for a in soup.select(".sb-genre-list li a")
            if a.get("href")
        ]

    async def home(self) -> HomePage:
        """Fetch landing page sections."""
        async with self.client() as client:
            soup = await self.fetch_html(client, "/home")

        candidates = [
            ("spotlight", "Spotlight", self._spotlight(soup)),
            ("trending", "Trending", self._trending(soup)),
            ("latest", "Latest Episode", self._block(soup, "Latest Episode")),
            ("new", "New On Satoru", self._block(soup, "New On Satoru")),
            ("top-airing", "Top Airing", self._sidebar(soup, ".anif-block-01 .ulclear li")),
            ("completed", "Completed", self._sidebar(soup, ".anif-block-02 .ulclear li")),
        ]
        sections = [HomeSection(key=k, title=t, items=items) for k, t, items in candidates if items]

        if not sections:
            self.note_empty("home", "spotlight/trending/block_area_home/anif-block")
            cards = _parse_cards(soup, ".flw-item")
            if cards:
                sections.append(HomeSection(key="latest", title="Latest", items=cards))

        genres = self._genres(soup)
        if genres:
            sections.append(HomeSection(key="genres", title="Genres", items=genres))

        return HomePage(sections=sections)

    # ===== SEARCH =====

    async def search(self, query: str, page: int = 1) -> SearchResult:
        """Search for content."""
        async with self.client() as client:
            soup = await self.fetch_html(client, "/search", params={"keyword": query, "page": page})

        results = _parse_cards(soup, ".flw-item")
        if not results:
            self.note_empty("search", ".flw-item")

        active = soup.select_one(".pagination .page-item.active")
        nxt = active.find_next_sibling("li") if active else None
        has_next = bool(nxt and "page-item" in (nxt.get("class") or []))

        return SearchResult(
            results=results,
            pagination=Pagination(current_page=page, has_next_page=has_next, total_pages=_total_pages(soup)),
        )

    async def _suggest(self, query: str) -> list[CatalogItem]:
        async with self.client(timeout=self.config.suggest_timeout) as client:
            data = await self.fetch_json(client, f"/ajax/search/suggest?keyword={quote(query)}")

        soup = soup_of(data.get("html", "") if isinstance(data, dict) else "")
        items = []
        for a in soup.select(".nav-item"):
            href = a.get("href")
            title = text_of(a, ".film-name")
            if href and title:
                items.append(CatalogItem(
                    id=_card_id(href),
                    title=title,
                    url=self.url(href),
                    poster=image_of(a),
                    episodes=text_of(a, ".film-infor") or None,
                ))
        return items

    # ===== DETAILS =====

    @staticmethod
    def _schema(soup: BeautifulSoup) -> dict:
        raw = soup.select_one('script[type="application/json"]')
        if not raw or not raw.string:
            return {}
        text = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", raw.string)
        text = re.sub(r",\s*([}\]])", r"\1", text)
        try:
            data = json.loads(text)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def details(self, ref: str) -> SeriesDetails:
        """Fetch series details. Satoru has no season selector: one season."""
        anime_id = slug_from_url(ref)
        async with self.client() as client:
            res = await self._request(client, "GET", f"/watch/{anime_id}")
            soup = soup_of(res.text)
            internal_id = attr_of(soup, "#anime-id", "value")
            if not internal_id:
                m = re.search(r"const movieId = (\d+);", res.text)
                internal_id = m.group(1) if m else None

            episodes: list[EpisodeRef] = []
            if internal_id:
                data = await self.fetch_json(client, f"/ajax/v2/episode/list/{internal_id}")
                ep_soup = soup_of(data.get("html", "") if isinstance(data, dict) else "")
                for el in ep_soup.select(".ep-item"):
                    ep_id = el.get("data-id")
                    if not ep_id:
                        continue
                    number = el.get("data-number")
                    episodes.append(EpisodeRef(
                        episode_id=str(ep_id),
                        number=number,
                        title=attr_of(el, ".ep-name", "title") or f"Episode {number}",
                        url=self.url(el.get("href", "")) if el.get("href") else "",
                    ))
            else:
                self.note_empty("details", "#anime-id")

        schema = self._schema(soup)
        return SeriesDetails(
            id=anime_id,
            title=schema.get("name") or text_of(soup, ".film-name.dynamic-name") or anime_id,
            poster=schema.get("thumbnailUrl") or image_of(soup, ".film-poster img"),
            description=schema.get("description") or text_of(soup, ".film-description .text") or None,
            seasons=[Season(season="1", episodes=episodes)] if episodes else [],
            genres=[clean_text(a.get_text()) for a in soup.select(".item-list a[href*='/genre/']")],
        )

    # ===== SERVERS =====

    async def episode(self, ref: str) -> EpisodePage:
        """Server list for an episode id. Servers carry opaque ids only."""
        async with self.client() as client:
            data = await self.fetch_json(client, f"/ajax/v2/episode/servers?episodeId={quote(ref)}")

        soup = soup_of(data.get("html", "") if isinstance(data, dict) else "")
        servers = []
        for el in soup.select(".server-item"):
            server_id = el.get("data-id")
            if not server_id:
                continue
            group = group_from_class(el, "servers-") or "unknown"
            servers.append(ServerDescriptor(
                id=str(server_id),
                name=clean_text(el.get_text()),
                language=group,
                category=CATEGORIES.get(group, "dub"),
            ))
        if not servers:
            self.note_empty("episode", ".server-item")

        title = text_of(soup, ".server-notice b") or f"Episode {ref}"
        return EpisodePage(title=title, servers=servers)

    async def resolve_server(self, server: ServerDescriptor) -> Optional[str]:
        if server.embed_url:
            return server.embed_url
        async with self.client() as client:
            data = await self.fetch_json(client, f"/ajax/v2/episode/sources?id={quote(server.id)}")
        link = data.get("link") if isinstance(data, dict) else None
        return link or None

    async def listing(self, kind: str, value: str, page: int = 1) -> SearchResult:
        path = f"/genre/{value}" if kind == "genre" else f"/{value}"
        async with self.client() as client:
            soup = await self.fetch_html(client, path, params={"page": page})
        results = _parse_cards(soup, ".flw-item")
        total = _total_pages(soup)
        return SearchResult(
            results=results,
            pagination=Pagination(current_page=page, has_next_page=bool(total and page < total), total_pages=total),
        )
