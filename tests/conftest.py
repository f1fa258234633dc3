import httpx
import pytest

from animegate.config import Config, reset_config
from animegate.server import create_app


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the user's config file and environment."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    for var in ("ANIMEGATE_PROXY_PATH", "ANIMEGATE_HEADLESS", "DESIDUB_PROXY"):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return Config(
        suggest_timeout=1.0,
        popup_grace=0.01,
        challenge_grace=0.0,
        click_pause=0.0,
        interaction_window=0.05,
    )


@pytest.fixture
def app(config):
    app = create_app(config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def make_transport():
    """Build an httpx.MockTransport answering by URL path.

    Values are an HTML/JSON string (200), a ``(status, body)`` tuple, or a
    callable taking the request. Unknown paths give 404. Every request is
    recorded on ``transport.calls``.
    """

    def build(routes: dict):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            answer = routes.get(request.url.path)
            if answer is None:
                return httpx.Response(404, text="not found")
            if callable(answer):
                return answer(request)
            if isinstance(answer, tuple):
                status, body = answer
                return httpx.Response(status, text=body)
            return httpx.Response(200, text=answer)

        transport = httpx.MockTransport(handler)
        transport.calls = calls
        return transport

    return build
