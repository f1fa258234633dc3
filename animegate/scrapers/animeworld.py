"""AnimeWorld scraper (Torofilm WordPress theme)."""

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
    FetchError, Scraper, abs_url, attr_of, clean_text, group_from_class, image_of, slug_from_url, soup_of, text_of
)

log = logging.getLogger(__name__)

MAIN_URL = "https://watchanimeworld.net"

SEASON_ACTION = "action_select_season"
SUGGEST_ACTIONS = ("torofilm_live_search", "live_search")

# "2 x 7" -> season 2, episode 7
_NUM_EPI_RE = re.compile(r"^(\d+)\s*x\s*(\d+)$", re.I)


def _guess_type(url: str) -> str:
    if "/series/" in url:
        return "series"
    if "/movies/" in url or "/movie/" in url:
        return "movie"
    return "unknown"


def _slug_key(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def _episode_id(url: str) -> str:
    """Path segment after /episode/, exactly as the site writes it."""
    if "/episode/" in url:
        return url.split("/episode/", 1)[1].split("?")[0].strip("/")
    return slug_from_url(url)


class AnimeWorldScraper(Scraper):
    """AnimeWorld catalog scraper."""

    base_url = MAIN_URL

    @property
    def name(self) -> str:
        return "AnimeWorld"

    def _parse_post(self, root) -> Optional[CatalogItem]:
        href = attr_of(root, "a.lnk-blk", "href") or attr_of(root, "a", "href")
        title = text_of(root, ".entry-title") or text_of(root, "h2")
        if not href or not title:
            return None
        url = abs_url(self.base_url, href)
        return CatalogItem(
            id=slug_from_url(url),
            title=title,
            url=url,
            poster=attr_of(root, "img", "src", "data-src"),
            type=_guess_type(url),
            quality=text_of(root, ".post-ql, .Qlty") or None,
            year=text_of(root, ".year") or None,
        )

    def _parse_posts(self, root, selector: str = "article.post") -> list[CatalogItem]:
        items = []
        for el in root.select(selector):
            item = self._parse_post(el)
            if item:
                items.append(item)
        return items

    def _pagination(self, soup: BeautifulSoup, page: int) -> Pagination:
        nxt = soup.select_one("a.next, .pagination a.next, a[rel='next']")
        numbers = [
            int(clean_text(a.get_text()))
            for a in soup.select(".pagination a.page-link, .nav-links a.page-numbers")
            if clean_text(a.get_text()).isdigit()
        ]
        total = max(numbers + [page]) if numbers else None
        return Pagination(current_page=page, has_next_page=nxt is not None, total_pages=total)

    # ===== HOME =====

    async def home(self) -> HomePage:
        """Fetch landing page sections."""
        async with self.client() as client:
            soup = await self.fetch_html(client, "/")

        sections: list[HomeSection] = []
        for i, sec in enumerate(soup.select("section.section")):
            title = (
                text_of(sec, ".section-title")
                or text_of(sec, "header .btn span")
                or f"Section {i + 1}"
            )
            items = self._parse_posts(sec)
            if items:
                sections.append(HomeSection(key=_slug_key(title), title=title, items=items))

        if not sections:
            self.note_empty("home", "section.section article.post")
            items = self._parse_posts(soup)
            if items:
                sections.append(HomeSection(key="latest", title="Latest Releases", items=items))

        return HomePage(sections=sections)

    # ===== SEARCH =====

    async def search(self, query: str, page: int = 1) -> SearchResult:
        """Search for content."""
        path = "/" if page <= 1 else f"/page/{page}/"
        async with self.client() as client:
            soup = await self.fetch_html(client, path, params={"s": query})

        results = self._parse_posts(soup)
        if not results:
            self.note_empty("search", "article.post")
        return SearchResult(results=results, pagination=self._pagination(soup, page))

    async def _suggest(self, query: str) -> list[CatalogItem]:
        async with self.client(timeout=self.config.suggest_timeout) as client:
            for action in SUGGEST_ACTIONS:
                try:
                    data = await self.fetch_json(
                        client, f"/wp-admin/admin-ajax.php?action={action}&term={quote(query)}"
                    )
                except FetchError as e:
                    log.debug("[%s] suggest action %s failed: %s", self.name, action, e)
                    continue

                items = self._suggest_items(data)
                if items:
                    return items
        return []

    def _suggest_items(self, data) -> list[CatalogItem]:
        if isinstance(data, dict) and "html" in data:
            soup = soup_of(data["html"])
            items = []
            for a in soup.select("a[href]"):
                title = clean_text(a.get_text())
                if title:
                    url = abs_url(self.base_url, a["href"])
                    items.append(CatalogItem(id=slug_from_url(url), title=title, url=url, poster=image_of(a)))
            return items

        rows = data if isinstance(data, list) else (data.get("data") or data.get("results") or []) if isinstance(data, dict) else []
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
                    poster=row.get("img") or row.get("image") or row.get("thumbnail"),
                    type=_guess_type(url),
                ))
        return items

    # ===== DETAILS =====

    def _episode_ref(self, el, number: Optional[str]) -> Optional[EpisodeRef]:
        href = attr_of(el, "a.lnk-blk", "href") or attr_of(el, "a", "href")
        if not href:
            return None
        url = abs_url(self.base_url, href)
        return EpisodeRef(
            episode_id=_episode_id(url),
            number=number,
            title=text_of(el, ".entry-title") or None,
            url=url,
            thumbnail=attr_of(el, "img", "src", "data-src"),
        )

    def _inline_episodes(self, soup: BeautifulSoup, season: str) -> list[EpisodeRef]:
        """Episodes already on the series page tagged "<season> x <n>"."""
        episodes = []
        for el in soup.select("#episode_by_temp article.post.episodes, #episode_by_temp li article"):
            m = _NUM_EPI_RE.match(text_of(el, ".num-epi"))
            if m and m.group(1) == season:
                ref = self._episode_ref(el, m.group(2))
                if ref:
                    episodes.append(ref)
        return episodes

    async def _season_fragment(self, client, post_id: str, season: str) -> list[EpisodeRef]:
        """Ask the theme's season switch endpoint for one season's episode list."""
        try:
            res = await self._request(
                client,
                "POST",
                "/wp-admin/admin-ajax.php",
                data={"action": SEASON_ACTION, "post": post_id, "season": season},
                headers={"X-Requested-With": "XMLHttpRequest"},
            )
        except FetchError as e:
            log.warning("[%s] season %s switch failed for post %s: %s", self.name, season, post_id, e)
            return []

        fragment = soup_of(res.text)
        episodes = []
        for el in fragment.select("article.post, li"):
            num = text_of(el, ".num-epi")
            m = _NUM_EPI_RE.match(num)
            ref = self._episode_ref(el, m.group(2) if m else (num or None))
            if ref and all(e.episode_id != ref.episode_id for e in episodes):
                episodes.append(ref)
        return episodes

    async def details(self, ref: str) -> SeriesDetails:
        """Fetch series details and every season's episodes."""
        url = self.url(ref if "/" in ref else f"/series/{ref}/")
        async with self.client() as client:
            soup = await self.fetch_html(client, url)

            season_numbers = [
                clean_text(a.get("data-season"))
                for a in soup.select(".choose-season ul li a[data-season], .choose-season [data-season]")
                if clean_text(a.get("data-season"))
            ]
            season_numbers = list(dict.fromkeys(season_numbers)) or ["1"]

            post_id = (
                clean_text(soup.body.get("data-post") if soup.body else "")
                or attr_of(soup, "input[name='post_id']", "value")
                or attr_of(soup, "[data-post]", "data-post")
            )

            seasons: list[Season] = []
            for season in season_numbers:
                episodes = self._inline_episodes(soup, season)
                if not episodes and post_id:
                    episodes = await self._season_fragment(client, post_id, season)
                if episodes:
                    seasons.append(Season(season=season, episodes=episodes))

        if not seasons:
            self.note_empty("details", "#episode_by_temp / season switch")

        return SeriesDetails(
            id=slug_from_url(url),
            title=text_of(soup, "h1") or "Unknown",
            poster=attr_of(soup, ".poster img", "src", "data-src") or attr_of(soup, ".wp-post-image", "src"),
            description=text_of(soup, ".description, .wp-content, .overview") or None,
            seasons=seasons,
            genres=[clean_text(a.get_text()) for a in soup.select(".genres a, a[rel='tag'][href*='/category/']")],
            recommendations=self._parse_posts(soup, "section.episodes ~ section article.post, .related article.post"),
        )

    # ===== SERVERS =====

    async def episode(self, ref: str) -> EpisodePage:
        """Server list for an episode URL or slug. Iframes are inline."""
        url = self.url(ref if "/" in ref else f"/episode/{ref}/")
        async with self.client() as client:
            soup = await self.fetch_html(client, url)

        servers = []
        for idx, a in enumerate(soup.select(".aa-tbs-video li a")):
            server_id = (a.get("href") or "").lstrip("#") or f"options-{idx}"
            pane = soup.find(id=server_id)
            iframe = pane.find("iframe") if pane else None
            embed = (iframe.get("data-src") or iframe.get("src")) if iframe else None
            if not embed or embed.startswith("about:"):
                continue
            group = group_from_class(a, "lang-") or text_of(a, ".server") or None
            servers.append(ServerDescriptor(
                id=server_id,
                name=clean_text(a.get_text(" ")),
                language=group,
                category="dub" if group and group.lower() != "japanese" else None,
                embed_url=abs_url(url, embed),
            ))
        if not servers:
            self.note_empty("episode", ".aa-tbs-video li a")

        return EpisodePage(title=text_of(soup, "h1") or "Episode", servers=servers)

    async def listing(self, kind: str, value: str, page: int = 1) -> SearchResult:
        """Category pages such as /category/genre/action/ or /letter/A/."""
        prefix = {"genre": "category/genre", "letter": "letter", "az": "letter"}.get(kind, kind)
        path = f"/{prefix}/{value}/" + (f"page/{page}/" if page > 1 else "")
        async with self.client() as client:
            soup = await self.fetch_html(client, path)
        return SearchResult(results=self._parse_posts(soup), pagination=self._pagination(soup, page))
