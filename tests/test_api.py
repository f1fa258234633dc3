import base64
import json
from urllib.parse import quote

import pytest

from animegate import api
from animegate.scrapers import get_scraper

SEARCH_HTML = """
<div class="flw-item"><a class="film-poster-ahref" href="/watch/bleach-9"></a>
  <h3 class="film-name">Bleach</h3></div>
"""


@pytest.fixture
def upstream(monkeypatch, make_transport):
    """Point every scraper the API builds at a mock transport."""

    def install(routes):
        transport = make_transport(routes)
        monkeypatch.setattr(
            api, "get_scraper", lambda name, config=None: get_scraper(name, config, transport=transport)
        )
        return transport

    return install


def test_unknown_source_is_404(client):
    rv = client.get("/api/nyaa")
    assert rv.status_code == 404
    body = rv.get_json()
    assert body["success"] is False
    assert body["sources"] == ["satoru", "animeworld", "desidub"]


def test_unknown_action_is_400(client):
    rv = client.get("/api/satoru?action=download")
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "Unknown action: download"


def test_missing_query_is_400(client, upstream):
    transport = upstream({})
    rv = client.get("/api/satoru?action=search")
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "Missing parameter: q"
    assert transport.calls == []


def test_bad_page_is_400(client, upstream):
    upstream({})
    rv = client.get("/api/satoru?action=search&q=x&page=two")
    assert rv.status_code == 400


def test_search_envelope(client, upstream):
    transport = upstream({"/search": SEARCH_HTML})
    rv = client.get("/api/satoru?action=search&q=bleach")

    assert rv.status_code == 200
    body = rv.get_json()
    assert body["success"] is True
    assert body["data"]["results"][0]["title"] == "Bleach"
    assert body["data"]["pagination"]["current_page"] == 1
    assert transport.calls[0].url.params["keyword"] == "bleach"


def test_home_is_default_action(client, upstream):
    upstream({"/home": "<html></html>"})
    rv = client.get("/api/satoru")
    assert rv.get_json() == {"success": True, "data": {"sections": []}}


def test_upstream_failure_is_502(client, upstream):
    upstream({"/home": (503, "down")})
    rv = client.get("/api/satoru?action=home")

    assert rv.status_code == 502
    body = rv.get_json()
    assert body["success"] is False
    assert body["error"] == "Upstream fetch failed"
    assert body["url"] == "https://satoru.one/home"


def test_resolve_returns_embed(client, upstream):
    upstream({"/ajax/v2/episode/sources": json.dumps({"link": "https://megacloud.blog/e/1"})})
    rv = client.get("/api/satoru?action=resolve&server=111")
    assert rv.get_json()["data"] == {"embed_url": "https://megacloud.blog/e/1"}


def test_extract_fast_path(client):
    token = base64.b64encode(json.dumps([
        {"language": "Hindi", "link": "https://cdn.example/hi.m3u8"},
        {"language": "English", "link": "https://cdn.example/en.m3u8"},
    ]).encode()).decode()
    url = f"https://short.icu/embed?data={token}"

    rv = client.get(f"/api/animeworld?action=extract&url={quote(url, safe='')}")

    assert rv.status_code == 200
    body = rv.get_json()
    assert body["success"] is True
    assert body["data"]["type"] == "multi-audio-list"
    assert [s["language"] for s in body["data"]["streams"]] == ["Hindi", "English"]


def test_extract_invalid_url_reports_failure(client):
    rv = client.get("/api/animeworld?action=extract&url=notaurl")
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["success"] is False
    assert body["data"]["error"] == "Invalid URL"


def test_cors_header_present(client, upstream):
    upstream({"/home": "<html></html>"})
    rv = client.get("/api/satoru", headers={"Origin": "http://localhost:3000"})
    assert rv.headers["Access-Control-Allow-Origin"] == "*"


def test_filter_action_passes_filters_to_desidub(client, upstream):
    transport = upstream({"/search/": '<div class="kira-grid"><div><a href="/anime/akira/"><h3>Akira</h3></a></div></div>'})
    rv = client.get("/api/desidub?action=filter&genre=action,sci-fi&type=movie&year=1988")

    assert rv.status_code == 200
    assert rv.get_json()["data"]["results"][0]["title"] == "Akira"
    params = transport.calls[0].url.params
    assert params.get_list("s_genre[]") == ["action", "sci-fi"]
    assert params.get_list("s_type[]") == ["movie"]
    assert params["s_year"] == "1988"
    assert params["s_orderby"] == "popular"
    assert params["s_order"] == "desc"


def test_search_with_filters_on_desidub(client, upstream):
    transport = upstream({"/search/": "<html></html>"})
    rv = client.get("/api/desidub?action=search&q=naruto&status=airing")

    assert rv.status_code == 200
    assert [c.url.path for c in transport.calls] == ["/search/"]
    assert transport.calls[0].url.params.get_list("s_status[]") == ["airing"]
    assert "s_orderby" not in transport.calls[0].url.params


def test_filters_rejected_where_unsupported(client, upstream):
    transport = upstream({})
    rv = client.get("/api/satoru?action=filter&genre=action")
    assert rv.status_code == 400
    assert "does not support" in rv.get_json()["error"]
    assert transport.calls == []
