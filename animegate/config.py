"""Configuration management for animegate."""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Host keyword -> Referer the CDN expects.
REFERER_MAP: dict[str, str] = {
    # HiAnime / MegaCloud family
    "megacloud": "https://megacloud.blog/",
    "rapid-cloud": "https://megacloud.blog/",
    "dokicloud": "https://megacloud.blog/",
    "stormshade": "https://megacloud.blog/",
    "rabbitstream": "https://megacloud.blog/",
    "netmagcdn": "https://megacloud.blog/",
    # AnimePahe / Kwik family
    "kwik": "https://kwik.cx/",
    "uwucdn": "https://kwik.cx/",
    "animepahe": "https://animepahe.ru/",
    # GogoAnime family
    "gogocdn": "https://gogoanime.tel/",
    "vidstreaming": "https://gogoanime.tel/",
    "goload": "https://gogoanime.tel/",
    "playtaku": "https://gogoanime.tel/",
    # Third party
    "streamtape": "https://streamtape.com/",
    "mp4upload": "https://mp4upload.com/",
    "dood": "https://dood.wf/",
}

DEFAULT_REFERER = "https://megacloud.blog/"

HOSTILE_HOSTS = [
    "short.icu",
    "abysscdn",
    "gdmirrorbot",
    "vmoly",
    "zephyrflick",
    "awstream",
]


def get_config_dir() -> Path:
    """Get config directory path."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "animegate"


@dataclass
class Config:
    """animegate configuration."""
    default_source: str = "animeworld"
    host: str = "127.0.0.1"
    port: int = 8000
    proxy_path: str = "/proxy"
    user_agent: str = USER_AGENT

    # scrapers
    request_timeout: float = 15.0
    suggest_timeout: float = 4.0
    desidub_proxy: Optional[str] = None

    # delivery proxy
    upstream_timeout: float = 30.0
    chunk_size: int = 128 * 1024
    referers: dict[str, str] = field(default_factory=lambda: dict(REFERER_MAP))
    default_referer: str = DEFAULT_REFERER

    # extraction engine (seconds)
    headless: bool = True
    hostile_hosts: list[str] = field(default_factory=lambda: list(HOSTILE_HOSTS))
    navigation_timeout: float = 30.0
    popup_grace: float = 0.8
    challenge_grace: float = 6.0
    click_pause: float = 1.5
    interaction_window: float = 12.0


_config: Config | None = None


def _apply_env(config: Config) -> Config:
    if os.environ.get("ANIMEGATE_PROXY_PATH"):
        config.proxy_path = os.environ["ANIMEGATE_PROXY_PATH"]
    if os.environ.get("ANIMEGATE_HEADLESS"):
        config.headless = os.environ["ANIMEGATE_HEADLESS"].lower() not in ("0", "false", "no")
    if os.environ.get("DESIDUB_PROXY"):
        config.desidub_proxy = os.environ["DESIDUB_PROXY"]
    return config


def load_config() -> Config:
    """Load configuration from file."""
    global _config
    if _config is not None:
        return _config

    config_file = get_config_dir() / "config.json"

    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            _config = Config(**{k: v for k, v in data.items() if k in Config.__dataclass_fields__})
        except (OSError, ValueError, TypeError) as e:
            log.warning("Failed to load config %s: %s", config_file, e)
            _config = Config()
    else:
        _config = Config()

    _config = _apply_env(_config)
    return _config


def save_config(config: Config) -> None:
    """Save configuration to file."""
    global _config
    _config = config

    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    config_file = config_dir / "config.json"

    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(asdict(config), f, indent=2)


def get_config() -> Config:
    """Get current configuration."""
    return load_config()


def reset_config() -> None:
    """Forget the cached configuration so the next call reloads it."""
    global _config
    _config = None
