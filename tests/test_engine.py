import asyncio
import base64
import json

import httpx
from playwright.async_api import Error as PlaywrightError

from animegate.extractor.engine import ExtractionEngine, find_in_html

HOSTILE = "https://short.icu/AbCdEf"


class Tracker:
    def __init__(self):
        self.sessions = []

    @property
    def created(self):
        return len(self.sessions)


class FakeSniffer:
    def __init__(self):
        self.captured = None

    async def wait(self, timeout):
        return self.captured


class FakeMouse:
    def __init__(self):
        self.clicks = []
        self.moves = []

    async def click(self, x, y):
        self.clicks.append((x, y))

    async def move(self, x, y, steps=1):
        self.moves.append((x, y, steps))


class FakeKeyboard:
    def __init__(self):
        self.pressed = []

    async def press(self, key):
        self.pressed.append(key)


class FakeElement:
    def __init__(self, box=None):
        self.clicks = 0
        self.box = box or {"x": 10, "y": 20, "width": 20, "height": 20}

    async def click(self, **kwargs):
        self.clicks += 1

    async def bounding_box(self):
        return self.box


class FakeFrame:
    def __init__(self, elements=None):
        self.elements = elements or {}

    async def query_selector(self, selector):
        return self.elements.get(selector)


class FakePage:
    viewport_size = {"width": 1280, "height": 720}

    def __init__(self, html="<html></html>", goto_error=None, screenshot_error=None, frames=None, content_error=None):
        self.html = html
        self.goto_error = goto_error
        self.screenshot_error = screenshot_error
        self.content_error = content_error
        self.frames = frames or []
        self.mouse = FakeMouse()
        self.keyboard = FakeKeyboard()
        self.on_goto = None

    async def goto(self, url, **kwargs):
        if self.goto_error:
            raise self.goto_error
        if self.on_goto:
            self.on_goto()

    async def content(self):
        if self.content_error:
            raise self.content_error
        return self.html

    async def screenshot(self, **kwargs):
        if self.screenshot_error:
            raise self.screenshot_error
        return b"png-bytes"


class FakeSession:
    def __init__(self, tracker, page):
        self.page = page
        self.sniffer = FakeSniffer()
        self.close_calls = 0
        tracker.sessions.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close_calls += 1


def engine_with(config, tracker, page=None, transport=None):
    page = page or FakePage()
    return ExtractionEngine(
        config,
        session_factory=lambda cfg: FakeSession(tracker, page),
        transport=transport,
    ), page


def run(engine, url):
    return asyncio.run(engine.extract_stream(url))


def test_fast_path_creates_no_session(config):
    tracker = Tracker()
    engine, _ = engine_with(config, tracker)
    token = base64.b64encode(json.dumps([{"language": "en", "link": "https://x/y.m3u8"}]).encode()).decode()

    result = run(engine, f"https://short.icu/embed?data={token}")

    assert result.ok
    assert result.type == "multi-audio-list"
    assert len(result.streams) == 1
    assert tracker.created == 0


def test_captured_request_returns_descriptor_and_closes_once(config):
    tracker = Tracker()
    engine, page = engine_with(config, tracker)

    def capture():
        tracker.sessions[0].sniffer.captured = "https://cdn.example/hls/master.m3u8?t=1"

    page.on_goto = capture
    result = run(engine, HOSTILE)

    assert result.ok
    assert result.type == "hls"
    assert result.file == "https://cdn.example/hls/master.m3u8?t=1"
    assert result.headers == {"Referer": HOSTILE}
    assert tracker.created == 1
    assert tracker.sessions[0].close_calls == 1


def test_html_fallback_unescapes_slashes(config):
    tracker = Tracker()
    html = '<script>var cfg = {"sources":[{"file":"https:\\/\\/cdn.example\\/v\\/index.m3u8"}]};</script>'
    engine, _ = engine_with(config, tracker, FakePage(html=html))

    result = run(engine, HOSTILE)

    assert result.ok
    assert result.file == "https://cdn.example/v/index.m3u8"
    assert tracker.sessions[0].close_calls == 1


def test_total_failure_attaches_screenshot_and_closes_once(config):
    tracker = Tracker()
    engine, _ = engine_with(config, tracker)

    result = run(engine, HOSTILE)

    assert not result.ok
    assert result.error == "No stream found"
    assert base64.b64decode(result.screenshot) == b"png-bytes"
    assert tracker.sessions[0].close_calls == 1


def test_screenshot_error_is_swallowed(config):
    tracker = Tracker()
    engine, _ = engine_with(config, tracker, FakePage(screenshot_error=PlaywrightError("target closed")))

    result = run(engine, HOSTILE)

    assert not result.ok
    assert result.screenshot is None
    assert tracker.sessions[0].close_calls == 1


def test_unreadable_html_still_gives_screenshot(config):
    tracker = Tracker()
    page = FakePage(content_error=PlaywrightError("Execution context was destroyed, most likely because of a navigation"))
    engine, _ = engine_with(config, tracker, page)

    result = run(engine, HOSTILE)

    assert not result.ok
    assert result.error == "No stream found"
    assert base64.b64decode(result.screenshot) == b"png-bytes"
    assert tracker.sessions[0].close_calls == 1


def test_unexpected_fault_becomes_error_and_session_closes_once(config):
    tracker = Tracker()
    engine, _ = engine_with(config, tracker, FakePage(goto_error=RuntimeError("browser crashed")))

    result = run(engine, HOSTILE)

    assert not result.ok
    assert result.error == "Extractor Error"
    assert "browser crashed" in result.details
    assert tracker.sessions[0].close_calls == 1


def test_navigation_timeout_still_interacts(config):
    tracker = Tracker()
    page = FakePage(goto_error=PlaywrightError("Timeout 30000ms exceeded"))
    engine, _ = engine_with(config, tracker, page)

    result = run(engine, HOSTILE)

    assert result.error == "No stream found"
    assert page.mouse.clicks[0] == (640, 360)


def test_play_buttons_clicked_twice_then_space(config):
    tracker = Tracker()
    button = FakeElement()
    page = FakePage(frames=[FakeFrame(), FakeFrame({".jw-icon-display": button})])
    engine, _ = engine_with(config, tracker, page)

    run(engine, HOSTILE)

    assert button.clicks == 2
    assert page.keyboard.pressed == ["Space"]


def test_challenge_checkbox_moves_pointer_in_steps(config):
    tracker = Tracker()
    checkbox = FakeElement({"x": 100, "y": 200, "width": 20, "height": 20})
    page = FakePage(frames=[FakeFrame({"input[type='checkbox']": checkbox})])
    engine, _ = engine_with(config, tracker, page)

    run(engine, HOSTILE)

    assert page.mouse.moves == [(110, 210, 25)]
    assert (110, 210) in page.mouse.clicks


def test_static_path_for_cooperative_host(config, make_transport):
    tracker = Tracker()
    html = "<script>jwplayer('v').setup({file: \"https://cdn.example/v/master.m3u8\"});</script>"
    transport = make_transport({"/e/abc": html})
    engine, _ = engine_with(config, tracker, transport=transport)

    result = run(engine, "https://player.example/e/abc")

    assert result.ok
    assert result.type == "hls"
    assert result.file == "https://cdn.example/v/master.m3u8"
    assert transport.calls[0].headers["Referer"] == "https://player.example/e/abc"
    assert tracker.created == 0


def test_static_path_mp4_and_not_found(config, make_transport):
    tracker = Tracker()
    transport = make_transport({
        "/mp4": '<video src="https://cdn.example/files/movie.mp4"></video>',
        "/none": "<p>nothing here</p>",
    })
    engine, _ = engine_with(config, tracker, transport=transport)

    mp4 = run(engine, "https://player.example/mp4")
    assert mp4.type == "mp4"
    assert mp4.file == "https://cdn.example/files/movie.mp4"

    missing = run(engine, "https://player.example/none")
    assert not missing.ok
    assert missing.error == "No stream found"


def test_static_fetch_failure_is_error(config):
    tracker = Tracker()

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    engine, _ = engine_with(config, tracker, transport=httpx.MockTransport(refuse))
    result = run(engine, "https://player.example/e/1")

    assert not result.ok
    assert result.error == "Fetch failed"


def test_invalid_url(config):
    engine, _ = engine_with(config, Tracker())
    assert run(engine, "").error == "Invalid URL"
    assert run(engine, "ftp://host/file").error == "Invalid URL"


def test_hostile_host_detection(config):
    engine, _ = engine_with(config, Tracker())
    assert engine.is_hostile("https://abysscdn.com/?v=1")
    assert engine.is_hostile("https://gdmirrorbot.nl/embed/x")
    assert not engine.is_hostile("https://megacloud.blog/embed-2/e-1/abc")
    assert not engine.is_hostile("https://player.example/e/1?ref=short.icu")
    assert not engine.is_hostile("https://player.example/abysscdn/video")


def test_find_in_html_prefers_jwplayer_file():
    html = 'a https://x/other.m3u8 b file: "https://cdn/v/main.m3u8"'
    assert find_in_html(html) == "https://cdn/v/main.m3u8"
    assert find_in_html("nothing") is None
