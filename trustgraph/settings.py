# trustgraph/settings.py
"""
Application settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

# Load .env file
from dotenv import load_dotenv
load_dotenv()


DEFAULT_RELAYS = [
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
    "wss://nos.lol",
    "wss://relay.snort.social",
]


def _relays_from_env() -> List[str]:
    raw = os.getenv("TRUSTGRAPH_RELAYS")
    if not raw:
        return list(DEFAULT_RELAYS)
    return [url.strip() for url in raw.split(",") if url.strip()]


@dataclass
class Settings:
    """Application configuration."""

    # Relays
    relay_urls: List[str] = field(default_factory=_relays_from_env)
    relay_connect_timeout_seconds: float = float(os.getenv("RELAY_CONNECT_TIMEOUT", "5"))
    relay_close_timeout_seconds: float = float(os.getenv("RELAY_CLOSE_TIMEOUT", "1"))

    # Fetch budgets (seconds)
    profile_timeout_seconds: float = float(os.getenv("PROFILE_TIMEOUT", "3"))
    follows_timeout_seconds: float = float(os.getenv("FOLLOWS_TIMEOUT", "8"))
    feed_timeout_seconds: float = float(os.getenv("FEED_TIMEOUT", "10"))

    # Profile lookups
    profile_batch_size: int = int(os.getenv("PROFILE_BATCH_SIZE", "100"))

    # Feed pagination
    feed_page_size: int = int(os.getenv("FEED_PAGE_SIZE", "20"))

    # Expansion
    max_expand_distance: int = int(os.getenv("MAX_EXPAND_DISTANCE", "3"))

    # Cache
    cache_url: str = os.getenv(
        "TRUSTGRAPH_CACHE_URL",
        "sqlite:///./var/trustgraph_cache.db"
    )
    cache_ttl_hours: float = float(os.getenv("CACHE_TTL_HOURS", "24"))

    # Trust oracle
    oracle_url: Optional[str] = os.getenv("TRUSTGRAPH_ORACLE_URL")
    oracle_timeout_seconds: float = float(os.getenv("ORACLE_TIMEOUT", "10"))
    my_pubkey: Optional[str] = os.getenv("TRUSTGRAPH_MY_PUBKEY")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "true").lower() == "true"

    # API settings
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))


# Global settings instance
settings = Settings()
