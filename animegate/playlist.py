"""HLS playlist rewriting so every sub-resource goes back through the proxy."""

import json
import re
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

KEY_TAG = "#EXT-X-KEY"
_URI_RE = re.compile(r'URI="([^"]+)"')

# Same unreserved set as JavaScript's encodeURIComponent.
_SAFE = "-_.!~*'()"


def resolve_url(base_url: str, maybe_relative: str) -> Optional[str]:
    """Resolve a URL relative to base_url, handling malformed URLs.

    Returns None when the result is not a fetchable http(s) URL.
    """
    ref = maybe_relative.strip()

    # Broken absolute URLs present in some providers (https:///path)
    if ref.startswith("https:///"):
        parsed_base = urlparse(base_url)
        ref = ref.replace("https:///", f"{parsed_base.scheme}://{parsed_base.netloc}/", 1)

    try:
        resolved = urljoin(base_url, ref)
        parsed = urlparse(resolved)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return resolved


def make_proxy_url(absolute_url: str, proxy_path: str = "/proxy", headers: Optional[dict] = None) -> str:
    """Build the proxied form of an absolute URL."""
    proxied = f"{proxy_path}?url={quote(absolute_url, safe=_SAFE)}"
    if headers:
        encoded = json.dumps(headers, separators=(",", ":"), sort_keys=True)
        proxied += f"&headers={quote(encoded, safe=_SAFE)}"
    return proxied


def is_proxied(value: str, proxy_path: str = "/proxy") -> bool:
    return f"{proxy_path}?url=" in value


def is_manifest(url: str, content_type: str = "") -> bool:
    """Whether a response should be treated as an HLS playlist."""
    ct = content_type.lower()
    return ".m3u8" in url.lower() or "mpegurl" in ct


def _rewrite_key_line(line: str, base_url: str, proxy_path: str, headers: Optional[dict]) -> str:
    def replace_uri(match: re.Match) -> str:
        uri = match.group(1)
        if is_proxied(uri, proxy_path):
            return match.group(0)
        resolved = resolve_url(base_url, uri)
        if resolved is None:
            return match.group(0)
        return f'URI="{make_proxy_url(resolved, proxy_path, headers)}"'

    return _URI_RE.sub(replace_uri, line, count=1)


def rewrite_playlist(
    content: str,
    base_url: str,
    proxy_path: str = "/proxy",
    headers: Optional[dict] = None,
) -> str:
    """Rewrite HLS playlist content.

    Line order and line count are preserved. Encryption key URIs and
    segment/variant lines are pointed at ``proxy_path``; other tags and blank
    lines pass through untouched. Lines that cannot be resolved are kept as-is.
    """
    result = []

    for raw in content.split("\n"):
        line = raw.rstrip("\r")
        eol = raw[len(line):]
        stripped = line.strip()

        if not stripped:
            result.append(raw)
            continue

        if stripped.startswith("#"):
            if stripped.startswith(KEY_TAG) and "URI=" in stripped:
                result.append(_rewrite_key_line(line, base_url, proxy_path, headers) + eol)
            else:
                result.append(raw)
            continue

        if is_proxied(stripped, proxy_path):
            result.append(raw)
            continue

        resolved = resolve_url(base_url, stripped)
        if resolved is None:
            result.append(raw)
            continue

        result.append(make_proxy_url(resolved, proxy_path, headers) + eol)

    return "\n".join(result)
