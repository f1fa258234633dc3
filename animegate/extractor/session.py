"""Isolated Playwright browser session with request sniffing and pop-up control."""

import asyncio
import logging
import re
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from animegate.config import Config, get_config

log = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-popup-blocking",
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--mute-audio",
]

VIEWPORT = {"width": 1280, "height": 720}

STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
const _query = window.navigator.permissions && window.navigator.permissions.query;
if (_query) {
  window.navigator.permissions.query = (p) => (
    p && p.name === 'notifications'
      ? Promise.resolve({ state: Notification.permission })
      : _query(p)
  );
}
"""

BLOCKED_RESOURCES = {"image", "font", "stylesheet"}

_MANIFEST_RE = re.compile(r"\.m3u8(?:$|[?#])", re.I)
_MEDIA_RE = re.compile(r"\.(?:mp4|m4v|webm|mkv)(?:$|[?#])", re.I)
# ad creatives that also end in a media extension
_AD_HINTS = ("/ads/", "preroll", "vast", "doubleclick", "banner", "promo", "/ad/")


def is_stream_url(url: str) -> bool:
    """Manifest, or a media file that is not an ad creative."""
    if _MANIFEST_RE.search(url):
        return True
    if _MEDIA_RE.search(url):
        lower = url.lower()
        return not any(hint in lower for hint in _AD_HINTS)
    return False


class StreamSniffer:
    """Route handler that captures the first stream URL and aborts noise."""

    def __init__(self):
        self.captured: Optional[str] = None
        self._event = asyncio.Event()

    def capture(self, url: str) -> None:
        if self.captured is None:
            log.info("captured stream request %s", url)
            self.captured = url
            self._event.set()

    async def handle(self, route, request) -> None:
        if request.resource_type in BLOCKED_RESOURCES:
            await route.abort()
            return
        if is_stream_url(request.url):
            # only the URL is needed
            self.capture(request.url)
            await route.abort()
            return
        await route.continue_()

    async def wait(self, timeout: float) -> Optional[str]:
        if self.captured is None:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        return self.captured


class PopupKiller:
    """Closes every new tab after a short grace delay, exactly once.

    The browser context feeds new pages into a queue via ``watch``; a single
    loop task drains it. Protected pages (the extraction tab) are never closed.
    """

    def __init__(self, grace: float = 0.8):
        self.grace = grace
        self._queue: asyncio.Queue = asyncio.Queue()
        self._protected = set()
        self._seen = set()
        self._closed = set()
        self._pending: set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def closed_count(self) -> int:
        return len(self._closed)

    def protect(self, page) -> None:
        self._protected.add(page)

    def watch(self, page) -> None:
        """Context "page" event handler."""
        self._queue.put_nowait(page)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            page = await self._queue.get()
            if page is None:
                break
            if page in self._protected or page in self._seen:
                continue
            self._seen.add(page)
            log.debug("pop-up opened, closing in %.1fs", self.grace)
            task = asyncio.create_task(self._close_later(page))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _close_later(self, page) -> None:
        await asyncio.sleep(self.grace)
        await self.close_page(page)

    async def close_page(self, page) -> None:
        if page in self._protected or page in self._closed:
            return
        self._closed.add(page)
        try:
            await page.close()
        except PlaywrightError as e:
            log.debug("pop-up already gone: %s", e)

    async def stop(self) -> None:
        """Stop the loop and close pop-ups still waiting out their grace."""
        if self._task is not None:
            self._queue.put_nowait(None)
            await self._task
            self._task = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for page in list(self._seen):
            await self.close_page(page)


class BrowserSession:
    """One non-persistent Chromium context, owned by a single extraction."""

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()
        self.sniffer = StreamSniffer()
        self.popups = PopupKiller(self.config.popup_grace)
        self.page = None
        self._playwright = None
        self._browser = None
        self._context = None
        self._closed = False

    async def start(self) -> "BrowserSession":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport=VIEWPORT,
            ignore_https_errors=True,
            locale="en-US",
        )
        await self._context.add_init_script(STEALTH_JS)
        await self._context.route("**/*", self.sniffer.handle)
        self._context.on("page", self.popups.watch)

        self.page = await self._context.new_page()
        self.page.set_default_timeout(self.config.navigation_timeout * 1000)
        self.popups.protect(self.page)
        self.popups.start()
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            await self.popups.stop()
        finally:
            for resource in (self._context, self._browser):
                if resource is None:
                    continue
                try:
                    await resource.close()
                except PlaywrightError as e:
                    log.debug("browser close: %s", e)
            if self._playwright is not None:
                await self._playwright.stop()
        log.debug("browser session closed")

    async def __aenter__(self) -> "BrowserSession":
        try:
            return await self.start()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
