"""Self-contained stream payloads carried in an embed URL's query string."""

import base64
import binascii
import json
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlparse

from animegate.models import AudioStream, StreamDescriptor

log = logging.getLogger(__name__)


def _b64_candidates(value: str):
    padded = value + "=" * (-len(value) % 4)
    for decode in (base64.urlsafe_b64decode, base64.b64decode):
        try:
            yield decode(padded)
        except (binascii.Error, ValueError):
            continue


def decode_streams(value: str) -> list[AudioStream]:
    """Decode a Base64 JSON array of ``{language, link}`` objects.

    Anything else (not Base64, not JSON, wrong shape) gives an empty list.
    """
    # '+' in an unescaped query value arrives as a space
    value = value.strip().replace(" ", "+")
    if len(value) < 8:
        return []

    for raw in _b64_candidates(value):
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        if not isinstance(data, list) or not data:
            continue

        streams = []
        for entry in data:
            if not isinstance(entry, dict):
                break
            link = entry.get("link")
            if not isinstance(link, str) or not link.startswith(("http://", "https://")):
                break
            streams.append(AudioStream(language=str(entry.get("language") or "unknown"), link=link))
        else:
            return streams
    return []


def decode_payload(url: str) -> Optional[StreamDescriptor]:
    """Multi-audio descriptor if any query parameter holds a stream list."""
    for name, value in parse_qsl(urlparse(url).query, keep_blank_values=False):
        streams = decode_streams(value)
        if streams:
            log.debug("payload in query parameter %r: %d stream(s)", name, len(streams))
            return StreamDescriptor(type="multi-audio-list", streams=streams)
    return None
