"""Flask-based delivery proxy for stream resources and HLS manifests."""

import json
import logging
from urllib.parse import urlparse

import requests
from flask import Flask, Response, current_app, jsonify, request, stream_with_context

from animegate.config import Config
from animegate.playlist import is_manifest, rewrite_playlist

log = logging.getLogger(__name__)


EXCLUDED_HEADERS = {
    "content-encoding",
    "content-length",
    "content-type",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "access-control-allow-origin",
    "access-control-allow-methods",
    "access-control-allow-headers",
    "access-control-expose-headers",
    "set-cookie",
}

MANIFEST_TYPE = "application/vnd.apple.mpegurl"


def new_session() -> requests.Session:
    """Pooled session shared by one app's request threads."""
    session = requests.Session()
    adapter = requests.adapters.HTTPAdapter(pool_connections=20, pool_maxsize=100)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def determine_referer(url: str, config: Config) -> str:
    """Pick the Referer a CDN expects, by host keyword."""
    lower = url.lower()
    for keyword, referer in config.referers.items():
        if keyword in lower:
            return referer
    return config.default_referer


def build_headers(url: str, config: Config, custom: dict | None = None) -> dict[str, str]:
    referer = determine_referer(url, config)
    parsed = urlparse(referer)
    headers = {
        "User-Agent": config.user_agent,
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "identity",
        "Referer": referer,
        "Origin": f"{parsed.scheme}://{parsed.netloc}",
    }
    if custom:
        headers.update({str(k): str(v) for k, v in custom.items()})
    return headers


def _error(message: str, status: int, **extra) -> Response:
    resp = jsonify({"error": message, **extra})
    resp.status_code = status
    return resp


def _parse_custom_headers(raw: str | None) -> dict | None:
    if not raw:
        return None
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("headers must be a JSON object")
    return value


def register(app: Flask, config: Config) -> None:
    app.add_url_rule(config.proxy_path, "proxy", proxy, methods=["GET"])


def proxy():
    """Fetch ``url`` upstream and relay it, rewriting HLS manifests."""
    config: Config = current_app.config["ANIMEGATE"]
    session: requests.Session = current_app.extensions["animegate_http"]

    url = request.args.get("url", "").strip()
    if not url:
        return _error("URL parameter is required", 400)
    if urlparse(url).scheme not in ("http", "https"):
        return _error("Invalid URL parameter", 400, url=url)

    try:
        custom = _parse_custom_headers(request.args.get("headers"))
    except ValueError as e:
        return _error("Invalid headers parameter", 400, details=str(e))

    headers = build_headers(url, config, custom)
    manifest_hint = ".m3u8" in url.lower()
    if "Range" in request.headers and not manifest_hint:
        headers["Range"] = request.headers["Range"]

    log.debug("proxy -> %s", url)
    try:
        upstream = session.get(
            url,
            headers=headers,
            stream=True,
            timeout=config.upstream_timeout,
            allow_redirects=True,
        )
    except requests.RequestException as e:
        log.warning("proxy fetch failed for %s: %s", url, e)
        return _error("Failed to fetch data", 500, details=str(e), url=url)

    content_type = upstream.headers.get("Content-Type", "")
    resp_headers = [
        (name, value) for name, value in upstream.headers.items()
        if name.lower() not in EXCLUDED_HEADERS
    ]
    if "Content-Length" in upstream.headers and "Content-Encoding" not in upstream.headers:
        resp_headers.append(("Content-Length", upstream.headers["Content-Length"]))

    ok = 200 <= upstream.status_code < 300
    if ok and is_manifest(url, content_type):
        try:
            text = upstream.content.decode("utf-8", errors="replace")
        finally:
            upstream.close()
        base_url = upstream.url or url
        rewritten = rewrite_playlist(text, base_url, config.proxy_path, custom)
        return Response(
            rewritten,
            status=upstream.status_code,
            headers={"Cache-Control": "public, max-age=600"},
            content_type=MANIFEST_TYPE,
        )

    if not ok:
        log.info("upstream %s returned %s, relaying", url, upstream.status_code)

    def generate():
        try:
            for chunk in upstream.iter_content(chunk_size=config.chunk_size):
                if chunk:
                    yield chunk
        finally:
            upstream.close()

    return Response(
        stream_with_context(generate()),
        status=upstream.status_code,
        headers=resp_headers,
        content_type=content_type or "application/octet-stream",
    )
