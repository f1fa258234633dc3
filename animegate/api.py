"""JSON catalog API: one endpoint per source, dispatched on ``action``."""

import asyncio
import logging

from flask import Blueprint, current_app, jsonify, request

from animegate.extractor import ExtractionEngine
from animegate.models import ServerDescriptor
from animegate.scrapers import FetchError, get_all_scraper_names, get_scraper

log = logging.getLogger(__name__)

bp = Blueprint("api", __name__, url_prefix="/api")

ACTIONS = ("home", "search", "filter", "suggestions", "details", "episode", "resolve", "list", "extract")

# query param -> search() keyword; list params are comma separated
FILTER_PARAMS = {"year": "year", "season": "season", "sort": "sort", "order": "order"}
FILTER_LIST_PARAMS = {"genre": "genres", "status": "statuses", "type": "types"}


class BadRequest(Exception):
    pass


def run_async(coro):
    """Run a coroutine to completion on this request thread."""
    return asyncio.run(coro)


def _ok(data, success: bool = True):
    return jsonify({"success": success, "data": data})


def _fail(message: str, status: int, **extra):
    resp = jsonify({"success": False, "error": message, **extra})
    resp.status_code = status
    return resp


def _arg(*names: str) -> str:
    for name in names:
        value = request.args.get(name, "").strip()
        if value:
            return value
    raise BadRequest(f"Missing parameter: {names[0]}")


def _page() -> int:
    raw = request.args.get("page", "1")
    try:
        page = int(raw)
    except ValueError:
        raise BadRequest(f"Invalid page: {raw}")
    return max(page, 1)


def _filters(defaults: bool) -> dict:
    filters = {}
    for name, key in FILTER_PARAMS.items():
        value = request.args.get(name, "").strip()
        if value:
            filters[key] = value
    for name, key in FILTER_LIST_PARAMS.items():
        values = [v.strip() for v in request.args.get(name, "").split(",") if v.strip()]
        if values:
            filters[key] = values
    if defaults:
        filters.setdefault("sort", "popular")
        filters.setdefault("order", "desc")
    return filters


async def _dispatch(scraper, action: str, config):
    if action == "home":
        return (await scraper.home()).to_dict()
    if action in ("search", "filter"):
        if action == "search":
            query = _arg("q", "keyword")
        else:
            query = request.args.get("q", "").strip()
        page = _page()
        filters = _filters(defaults=action == "filter")
        if filters and not scraper.supports_filters:
            raise BadRequest(f"{scraper.name} does not support search filters")
        return (await scraper.search(query, page, **filters)).to_dict()
    if action == "suggestions":
        return [item.to_dict() for item in await scraper.suggestions(_arg("q", "keyword"))]
    if action == "details":
        return (await scraper.details(_arg("id", "url"))).to_dict()
    if action == "episode":
        return (await scraper.episode(_arg("id", "url"))).to_dict()
    if action == "resolve":
        server = ServerDescriptor(id=_arg("server", "id"), name="", embed_url=request.args.get("url") or None)
        return {"embed_url": await scraper.resolve_server(server)}
    if action == "list":
        kind, value, page = _arg("kind"), _arg("value"), _page()
        return (await scraper.listing(kind, value, page)).to_dict()
    # extract
    return await ExtractionEngine(config).extract_stream(_arg("url"))


@bp.route("/<source>", methods=["GET"])
def catalog(source: str):
    config = current_app.config["ANIMEGATE"]
    scraper = get_scraper(source, config)
    if scraper is None:
        return _fail(f"Unknown source: {source}", 404, sources=get_all_scraper_names())

    action = request.args.get("action", "home")
    if action not in ACTIONS:
        return _fail(f"Unknown action: {action}", 400, actions=list(ACTIONS))

    try:
        result = run_async(_dispatch(scraper, action, config))
    except BadRequest as e:
        return _fail(str(e), 400)
    except FetchError as e:
        log.warning("[%s] %s failed: %s", source, action, e)
        return _fail("Upstream fetch failed", 502, details=e.reason, url=e.url)

    if action == "extract":
        return _ok(result.to_dict(), success=result.ok)
    return _ok(result)
