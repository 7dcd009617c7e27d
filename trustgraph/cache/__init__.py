# Cache module - versioned local cache for profiles and trust facts
from .storage import KeyValueStorage, MemoryStorage, SqlStorage
from .profile_cache import (
    CacheEntry,
    CacheNamespace,
    LocalCache,
    CURRENT_TRUST_CACHE_VERSION,
    DEFAULT_TTL_SECONDS,
)

__all__ = [
    "KeyValueStorage",
    "MemoryStorage",
    "SqlStorage",
    "CacheEntry",
    "CacheNamespace",
    "LocalCache",
    "CURRENT_TRUST_CACHE_VERSION",
    "DEFAULT_TTL_SECONDS",
]
