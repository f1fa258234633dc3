"""Stream extraction: payload fast path, static fetch, or a driven browser session."""

import asyncio
import base64
import logging
import re
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx
from playwright.async_api import Error as PlaywrightError

from animegate.config import Config, get_config
from animegate.extractor.payload import decode_payload
from animegate.extractor.session import BrowserSession
from animegate.models import ExtractionResult, StreamDescriptor, StreamError

log = logging.getLogger(__name__)

# JWPlayer setup: file: "https://..."
_JW_FILE_RE = re.compile(r"""file:\s*["'](https?://[^"']+)["']""")
_M3U8_RE = re.compile(r"(https?://[a-zA-Z0-9\-_./]+\.m3u8[a-zA-Z0-9\-_./?=&%]*)")
_MP4_RE = re.compile(r"(https?://[a-zA-Z0-9\-_./]+\.mp4[a-zA-Z0-9\-_./?=&%]*)")

CHALLENGE_SELECTORS = [
    "input[type='checkbox']",
    "#challenge-stage input",
    ".cb-lb input",
    "[role='checkbox']",
]

PLAY_SELECTORS = [
    ".jw-icon-display",
    ".vjs-big-play-button",
    ".plyr__control--overlaid",
    "button[aria-label*='Play' i]",
    ".play-button",
    "#play",
    "video",
]


def stream_type(url: str) -> str:
    return "hls" if ".m3u8" in url.lower() else "mp4"


def find_in_html(html: str) -> Optional[str]:
    """JWPlayer file, then any manifest, then any mp4 in page source."""
    html = html.replace("\\/", "/")
    m = _JW_FILE_RE.search(html)
    if m and (".m3u8" in m.group(1) or ".mp4" in m.group(1)):
        return m.group(1)
    for pattern in (_M3U8_RE, _MP4_RE):
        m = pattern.search(html)
        if m:
            return m.group(1)
    return None


class ExtractionEngine:
    """Turns one embed URL into a playable stream descriptor.

    Every call resolves to a ``StreamDescriptor`` or a ``StreamError``.
    Browser sessions are created per call and only for hostile hosts.
    """

    def __init__(
        self,
        config: Config | None = None,
        session_factory: Callable[[Config], BrowserSession] = BrowserSession,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or get_config()
        self.session_factory = session_factory
        self._transport = transport

    def is_hostile(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(h.lower() in host for h in self.config.hostile_hosts)

    async def extract_stream(self, url: str) -> ExtractionResult:
        try:
            if not url or not url.startswith(("http://", "https://")):
                return StreamError("Invalid URL", details=url or None)

            payload = decode_payload(url)
            if payload:
                return payload

            if not self.is_hostile(url):
                return await self._static(url)
            return await self._drive(url)
        except Exception as e:
            log.exception("extraction failed for %s", url)
            return StreamError("Extractor Error", details=str(e))

    # ===== STATIC PATH =====

    async def _static(self, url: str) -> ExtractionResult:
        headers = {"User-Agent": self.config.user_agent, "Referer": url}
        async with httpx.AsyncClient(
            headers=headers,
            timeout=self.config.request_timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            try:
                res = await client.get(url)
            except httpx.HTTPError as e:
                log.info("static fetch failed for %s: %s", url, e)
                return StreamError("Fetch failed", details=str(e))

        found = find_in_html(res.text)
        if not found:
            return StreamError("No stream found", details=url)
        return StreamDescriptor(type=stream_type(found), file=found, headers={"Referer": url})

    # ===== SLOW PATH =====

    async def _drive(self, url: str) -> ExtractionResult:
        async with self.session_factory(self.config) as session:
            page = session.page
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout * 1000)
            except PlaywrightError as e:
                # the player may still have fired its requests
                log.info("navigation to %s incomplete: %s", url, e)

            await self._interact(session)

            captured = await session.sniffer.wait(self.config.interaction_window)
            if captured:
                return StreamDescriptor(type=stream_type(captured), file=captured, headers={"Referer": url})

            try:
                html = await page.content()
            except PlaywrightError as e:
                # page navigated away mid-read
                log.info("rendered HTML unavailable for %s: %s", url, e)
                html = ""
            found = find_in_html(html)
            if found:
                log.info("stream found in rendered HTML for %s", url)
                return StreamDescriptor(type=stream_type(found), file=found, headers={"Referer": url})

            return StreamError(
                "No stream found",
                details=f"no stream request within {self.config.interaction_window:.0f}s",
                screenshot=await self._screenshot(page),
            )

    async def _interact(self, session) -> None:
        page = session.page
        viewport = page.viewport_size or {"width": 1280, "height": 720}
        try:
            # dismiss interstitial overlays
            await page.mouse.click(viewport["width"] / 2, viewport["height"] / 2)
        except PlaywrightError as e:
            log.debug("blind click failed: %s", e)

        if session.sniffer.captured:
            return
        await self._solve_challenge(page)
        if session.sniffer.captured:
            return
        await self._press_play(page)

    async def _solve_challenge(self, page) -> bool:
        for frame in page.frames:
            for selector in CHALLENGE_SELECTORS:
                try:
                    el = await frame.query_selector(selector)
                    box = await el.bounding_box() if el else None
                except PlaywrightError:
                    continue
                if not box:
                    continue

                x = box["x"] + box["width"] / 2
                y = box["y"] + box["height"] / 2
                log.info("challenge checkbox found, clicking")
                try:
                    await page.mouse.move(x, y, steps=25)
                    await page.mouse.click(x, y)
                except PlaywrightError as e:
                    log.debug("challenge click failed: %s", e)
                await asyncio.sleep(self.config.challenge_grace)
                return True
        return False

    async def _press_play(self, page) -> int:
        targets = []
        for frame in page.frames:
            for selector in PLAY_SELECTORS:
                try:
                    el = await frame.query_selector(selector)
                except PlaywrightError:
                    continue
                if el:
                    targets.append(el)
                    break

        clicked = await self._click_all(targets)
        if clicked:
            # second click once the ad layer has opened
            await asyncio.sleep(self.config.click_pause)
            await self._click_all(targets)
        try:
            await page.keyboard.press("Space")
        except PlaywrightError as e:
            log.debug("space key failed: %s", e)
        return clicked

    @staticmethod
    async def _click_all(targets) -> int:
        clicked = 0
        for el in targets:
            try:
                await el.click(timeout=2000, force=True)
                clicked += 1
            except PlaywrightError as e:
                log.debug("play click failed: %s", e)
        return clicked

    @staticmethod
    async def _screenshot(page) -> Optional[str]:
        try:
            png = await page.screenshot(type="png")
        except Exception as e:
            log.debug("screenshot unavailable: %s", e)
            return None
        return base64.b64encode(png).decode("ascii")


async def extract_stream(url: str, config: Config | None = None) -> ExtractionResult:
    """Extract a stream with a default engine."""
    return await ExtractionEngine(config).extract_stream(url)
