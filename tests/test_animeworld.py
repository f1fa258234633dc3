import asyncio
import json
import logging
from urllib.parse import parse_qs

import httpx
import pytest

from animegate.scrapers.animeworld import AnimeWorldScraper

SITE = "https://watchanimeworld.net"


def post_card(slug, title, kind="series"):
    return f"""
    <article class="post dfx fcl movies">
      <div class="post-thumbnail"><figure><img src="https://img/{slug}.jpg"></figure>
        <span class="post-ql">HD</span><span class="year">2023</span></div>
      <header class="entry-header"><h2 class="entry-title">{title}</h2></header>
      <a class="lnk-blk" href="{SITE}/{kind}/{slug}/"></a>
    </article>"""


HOME_HTML = f"""
<html><body>
<section class="section movies">
  <header class="section-header"><h3 class="section-title">Newest Drops</h3></header>
  {post_card('jujutsu-kaisen', 'Jujutsu Kaisen')}
  {post_card('suzume', 'Suzume', 'movies')}
</section>
<section class="section episodes">
  <header class="section-header"><h3 class="section-title">Latest Episodes</h3></header>
  {post_card('jujutsu-kaisen-2x1', 'Jujutsu Kaisen 2x1', 'episode')}
</section>
<section class="section"><header><h3 class="section-title">Empty</h3></header></section>
</body></html>
"""

SERIES_HTML = f"""
<html><body class="single" data-post="555">
<h1 class="entry-title">Jujutsu Kaisen</h1>
<div class="post-thumbnail"><div class="poster"><img src="https://img/jjk.jpg"></div></div>
<div class="description"><p>Curses and sorcerers.</p></div>
<p class="genres"><a href="{SITE}/category/genre/action/">Action</a></p>
<div class="choose-season"><ul class="sub-menu">
  <li><a data-post="555" data-season="1" href="#">Season 1</a></li>
  <li><a data-post="555" data-season="2" href="#">Season 2</a></li>
</ul></div>
<ul id="episode_by_temp">
  <li><article class="post dfx fcl episodes">
    <header><span class="num-epi">1 x 1</span><h2 class="entry-title">Ryomen Sukuna</h2></header>
    <a class="lnk-blk" href="{SITE}/episode/jujutsu-kaisen-1x1/"></a></article></li>
  <li><article class="post dfx fcl episodes">
    <header><span class="num-epi">1 x 2</span><h2 class="entry-title">For Myself</h2></header>
    <a class="lnk-blk" href="{SITE}/episode/jujutsu-kaisen-1x2/"></a></article></li>
</ul>
</body></html>
"""

SEASON_2_FRAGMENT = f"""
<li><article class="post dfx fcl episodes">
  <header><span class="num-epi">2 x 1</span><h2 class="entry-title">Hidden Inventory</h2></header>
  <a class="lnk-blk" href="{SITE}/episode/jujutsu-kaisen-2x1/"></a></article></li>
"""

EPISODE_HTML = """
<html><body>
<h1 class="entry-title">Jujutsu Kaisen 1x1</h1>
<div class="video-player">
  <div id="options-0" class="video aa-tb on"><iframe data-src="https://short.icu/AbCd" src="about:blank"></iframe></div>
  <div id="options-1" class="video aa-tb"><iframe src="https://play.zephyrflick.top/video/xyz"></iframe></div>
  <div id="options-2" class="video aa-tb"></div>
</div>
<ul class="aa-tbs aa-tbs-video">
  <li><a class="btn on" href="#options-0"><span class="nmopt">01</span><span class="server">Hindi</span></a></li>
  <li><a class="btn" href="#options-1"><span class="nmopt">02</span><span class="server">Japanese</span></a></li>
  <li><a class="btn" href="#options-2"><span class="nmopt">03</span><span class="server">Tamil</span></a></li>
</ul>
</body></html>
"""


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def animeworld(config, make_transport):
    def build(routes):
        return AnimeWorldScraper(config, transport=make_transport(routes))
    return build


def season_switch(fragments: dict, seen: list):
    def handler(request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        seen.append(form)
        assert request.method == "POST"
        assert form["action"] == ["action_select_season"]
        season = form["season"][0]
        if season not in fragments:
            return httpx.Response(500, text="error")
        return httpx.Response(200, text=fragments[season])
    return handler


def test_home_sections(animeworld):
    page = run(animeworld({"/": HOME_HTML}).home())

    assert [s.key for s in page.sections] == ["newest-drops", "latest-episodes"]
    newest = page.section("newest-drops").items
    assert [i.title for i in newest] == ["Jujutsu Kaisen", "Suzume"]
    assert newest[0].id == "jujutsu-kaisen"
    assert newest[0].type == "series"
    assert newest[1].type == "movie"
    assert newest[0].quality == "HD"
    assert newest[0].year == "2023"


def test_home_fallback_to_generic_posts(animeworld):
    html = f"<html><body><div class='grid'>{post_card('one', 'One')}</div></body></html>"
    page = run(animeworld({"/": html}).home())
    assert [s.key for s in page.sections] == ["latest"]
    assert page.sections[0].items[0].title == "One"


def test_home_no_sections(animeworld, caplog):
    with caplog.at_level(logging.WARNING):
        page = run(animeworld({"/": "<html><body></body></html>"}).home())
    assert page.sections == []
    assert "AnimeWorld" in caplog.text


def test_search_pages(animeworld):
    html = post_card('naruto', 'Naruto') + '<nav class="navigation pagination"><a class="next page-numbers" href="/page/2/?s=naruto">Next</a></nav>'
    scraper = animeworld({"/": html, "/page/2/": post_card('naruto-shippuden', 'Naruto Shippuden')})

    first = run(scraper.search("naruto"))
    assert first.results[0].title == "Naruto"
    assert first.pagination.has_next_page is True

    second = run(scraper.search("naruto", page=2))
    assert second.results[0].id == "naruto-shippuden"
    assert second.pagination.current_page == 2
    assert second.pagination.has_next_page is False
    assert scraper._transport.calls[1].url.params["s"] == "naruto"


def test_details_inline_and_ajax_seasons(animeworld):
    seen = []
    scraper = animeworld({
        "/series/jujutsu-kaisen/": SERIES_HTML,
        "/wp-admin/admin-ajax.php": season_switch({"2": SEASON_2_FRAGMENT}, seen),
    })
    details = run(scraper.details("jujutsu-kaisen"))

    assert details.title == "Jujutsu Kaisen"
    assert details.poster == "https://img/jjk.jpg"
    assert details.description == "Curses and sorcerers."
    assert details.genres == ["Action"]

    assert [s.season for s in details.seasons] == ["1", "2"]
    s1, s2 = details.seasons
    assert [(e.number, e.episode_id) for e in s1.episodes] == [("1", "jujutsu-kaisen-1x1"), ("2", "jujutsu-kaisen-1x2")]
    assert s1.episodes[0].title == "Ryomen Sukuna"
    assert [(e.number, e.episode_id) for e in s2.episodes] == [("1", "jujutsu-kaisen-2x1")]

    # season 1 was inline, so only season 2 hit the endpoint
    assert len(seen) == 1
    assert seen[0]["post"] == ["555"]
    assert seen[0]["season"] == ["2"]


def test_failed_season_switch_omits_season(animeworld):
    seen = []
    scraper = animeworld({
        "/series/jujutsu-kaisen/": SERIES_HTML,
        "/wp-admin/admin-ajax.php": season_switch({}, seen),
    })
    details = run(scraper.details(f"{SITE}/series/jujutsu-kaisen/"))

    assert [s.season for s in details.seasons] == ["1"]
    assert len(seen) == 1


def test_details_without_season_selector_is_season_one(animeworld):
    html = SERIES_HTML.replace('class="choose-season"', 'class="nothing"')
    details = run(animeworld({"/series/jujutsu-kaisen/": html}).details("jujutsu-kaisen"))
    assert [s.season for s in details.seasons] == ["1"]
    assert len(details.episodes) == 2


def test_episode_inline_servers(animeworld):
    page = run(animeworld({"/episode/jujutsu-kaisen-1x1/": EPISODE_HTML}).episode("jujutsu-kaisen-1x1"))

    assert page.title == "Jujutsu Kaisen 1x1"
    assert [(s.id, s.language, s.category, s.embed_url) for s in page.servers] == [
        ("options-0", "Hindi", "dub", "https://short.icu/AbCd"),
        ("options-1", "Japanese", None, "https://play.zephyrflick.top/video/xyz"),
    ]
    assert not any(s.needs_resolution for s in page.servers)


def test_suggestions_from_live_search(animeworld):
    rows = [{"title": f"Title {i}", "url": f"{SITE}/series/t-{i}/", "img": "https://img/x.jpg"} for i in range(7)]

    def live_search(request):
        if request.url.params["action"] == "torofilm_live_search":
            return httpx.Response(400, text="0")
        return httpx.Response(200, json=rows)

    items = run(animeworld({"/wp-admin/admin-ajax.php": live_search}).suggestions("title"))
    assert len(items) == 5
    assert items[0].id == "t-0"
    assert items[0].type == "series"


def test_listing_genre(animeworld):
    scraper = animeworld({"/category/genre/action/": post_card('bleach', 'Bleach')})
    result = run(scraper.listing("genre", "action"))
    assert result.results[0].title == "Bleach"
