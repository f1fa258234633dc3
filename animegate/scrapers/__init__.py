"""Scrapers package."""

import httpx

from animegate.config import Config
from animegate.scrapers.animeworld import AnimeWorldScraper
from animegate.scrapers.base import FetchError, Scraper
from animegate.scrapers.desidub import DesiDubScraper
from animegate.scrapers.satoru import SatoruScraper

__all__ = [
    "FetchError",
    "Scraper",
    "SatoruScraper",
    "AnimeWorldScraper",
    "DesiDubScraper",
]

# Scraper registry: key -> class. Instances are built per call.
SCRAPERS: dict[str, type[Scraper]] = {
    "satoru": SatoruScraper,
    "animeworld": AnimeWorldScraper,
    "desidub": DesiDubScraper,
}


def get_scraper(
    name: str,
    config: Config | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Scraper | None:
    """Get a fresh scraper by key, or None if unknown."""
    cls = SCRAPERS.get(name.lower())
    return cls(config=config, transport=transport) if cls else None


def get_all_scraper_names() -> list[str]:
    """Get all registered scraper keys."""
    return list(SCRAPERS)
