"""Embed page to stream URL extraction."""

from animegate.extractor.engine import ExtractionEngine, extract_stream
from animegate.extractor.payload import decode_payload
from animegate.extractor.session import BrowserSession, PopupKiller, StreamSniffer

__all__ = [
    "ExtractionEngine",
    "extract_stream",
    "decode_payload",
    "BrowserSession",
    "PopupKiller",
    "StreamSniffer",
]
