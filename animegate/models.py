"""Data models for animegate scrapers and the extraction engine."""

from dataclasses import asdict, dataclass, field
from typing import Literal, Optional, Union


class _Serializable:
    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CatalogItem(_Serializable):
    """Search/browse result item."""
    id: str
    title: str
    url: str = ""
    poster: Optional[str] = None
    type: Optional[str] = None
    episodes: Optional[str] = None
    quality: Optional[str] = None
    year: Optional[str] = None
    languages: list[str] = field(default_factory=list)


@dataclass
class HomeSection(_Serializable):
    """Named row of the landing page."""
    key: str
    title: str
    items: list[CatalogItem] = field(default_factory=list)


@dataclass
class HomePage(_Serializable):
    sections: list[HomeSection] = field(default_factory=list)

    def section(self, key: str) -> Optional[HomeSection]:
        for s in self.sections:
            if s.key == key:
                return s
        return None


@dataclass
class Pagination(_Serializable):
    current_page: int = 1
    has_next_page: bool = False
    total_pages: Optional[int] = None


@dataclass
class SearchResult(_Serializable):
    results: list[CatalogItem] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)


@dataclass
class EpisodeRef(_Serializable):
    """Reference to one playable episode.

    ``episode_id`` is whatever the source itself uses (URL path segment or
    data attribute) so it stays valid across requests.
    """
    episode_id: str
    number: Optional[str] = None
    title: Optional[str] = None
    url: str = ""
    thumbnail: Optional[str] = None


@dataclass
class Season(_Serializable):
    season: str
    episodes: list[EpisodeRef] = field(default_factory=list)


@dataclass
class SeriesDetails(_Serializable):
    """Full series/movie details."""
    id: str
    title: str
    poster: Optional[str] = None
    description: Optional[str] = None
    seasons: list[Season] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    recommendations: list[CatalogItem] = field(default_factory=list)

    @property
    def episodes(self) -> list[EpisodeRef]:
        return [ep for s in self.seasons for ep in s.episodes]


@dataclass
class ServerDescriptor(_Serializable):
    """One candidate playback source for an episode."""
    id: str
    name: str
    language: Optional[str] = None
    category: Optional[str] = None
    embed_url: Optional[str] = None

    @property
    def needs_resolution(self) -> bool:
        return not self.embed_url


@dataclass
class EpisodePage(_Serializable):
    title: str
    servers: list[ServerDescriptor] = field(default_factory=list)


@dataclass
class AudioStream(_Serializable):
    """One language variant of a multi-audio stream."""
    language: str
    link: str


@dataclass
class StreamDescriptor(_Serializable):
    """Resolved, playable media reference."""
    type: Literal["hls", "mp4", "multi-audio-list"]
    file: Optional[str] = None
    streams: list[AudioStream] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    ok = True


@dataclass
class StreamError(_Serializable):
    """Structured extraction failure."""
    error: str
    details: Optional[str] = None
    screenshot: Optional[str] = None

    ok = False


ExtractionResult = Union[StreamDescriptor, StreamError]
