# trustgraph/cache/profile_cache.py
"""
Versioned local cache for profiles and trust facts.

Two namespaces, each a JSON document in key-value storage:
- profiles: pubkey -> NodeProfile
- trust:    pubkey -> TrustFact (versioned; purged wholesale on format bump)

Every entry carries cached_at and is valid while now - cached_at < TTL.
The cache is an optimization only: storage errors are logged and
swallowed, and every caller must work against an empty cache.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from ..graph.models import NodeProfile, TrustFact
from ..graph.scoring import ScoringConfig, DEFAULT_SCORING_CONFIG, trust_score
from ..logging import get_logger
from .storage import KeyValueStorage, MemoryStorage

logger = get_logger(__name__)

PROFILE_CACHE_KEY = "trustgraph-profile-cache"
TRUST_CACHE_KEY = "trustgraph-trust-cache"
TRUST_CACHE_VERSION_KEY = "trustgraph-trust-cache-version"

# Bump when the stored trust format changes
CURRENT_TRUST_CACHE_VERSION = 2

DEFAULT_TTL_SECONDS = 24 * 60 * 60

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached payload with its write time (epoch seconds)."""
    value: T
    cached_at: float

    def is_valid(self, now: float, ttl_seconds: float) -> bool:
        return now - self.cached_at < ttl_seconds


class CacheNamespace(Generic[T]):
    """
    One namespace of the cache, stored as a single JSON document.

    Layout: {"entries": {key: {...payload, "cached_at": <epoch seconds>}}}
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        storage_key: str,
        encode: Callable[[T], Dict[str, Any]],
        decode: Callable[[str, Dict[str, Any]], Optional[T]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        required_fields: Iterable[str] = (),
    ):
        self._storage = storage
        self._key = storage_key
        self._encode = encode
        self._decode = decode
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._required_fields = tuple(required_fields)
        self.hits = 0
        self.misses = 0

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            raw = self._storage.get(self._key)
        except Exception as e:
            logger.warning("cache_read_failed", namespace=self._key, error=str(e))
            return {}
        if not raw:
            return {}
        try:
            document = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("cache_document_corrupt", namespace=self._key)
            return {}
        entries = document.get("entries") if isinstance(document, dict) else None
        return entries if isinstance(entries, dict) else {}

    def _save(self, entries: Dict[str, Dict[str, Any]]) -> None:
        try:
            self._storage.set(self._key, json.dumps({"entries": entries}))
        except Exception as e:
            logger.warning("cache_write_failed", namespace=self._key, error=str(e))

    def _entry(self, key: str, raw: Any) -> Optional[CacheEntry[T]]:
        """Decode a raw entry; None if malformed, expired, or missing fields."""
        if not isinstance(raw, dict):
            return None
        cached_at = raw.get("cached_at")
        if not isinstance(cached_at, (int, float)):
            return None
        if any(name not in raw for name in self._required_fields):
            return None
        entry_time = float(cached_at)
        if self._clock() - entry_time >= self.ttl_seconds:
            return None
        try:
            value = self._decode(key, raw)
        except (KeyError, TypeError, ValueError):
            return None
        if value is None:
            return None
        return CacheEntry(value=value, cached_at=entry_time)

    # ============================================================
    # OPERATIONS
    # ============================================================

    def get(self, key: str) -> Optional[T]:
        """Valid cached value for key, or None."""
        entry = self._entry(key, self._load().get(key))
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def get_many(self, keys: Iterable[str]) -> Dict[str, T]:
        """Valid cached values for the requested keys (missing keys omitted)."""
        entries = self._load()
        result: Dict[str, T] = {}
        for key in keys:
            entry = self._entry(key, entries.get(key))
            if entry is None:
                self.misses += 1
                continue
            self.hits += 1
            result[key] = entry.value
        return result

    def get_missing(self, keys: Iterable[str]) -> List[str]:
        """Keys with no valid entry, in request order."""
        entries = self._load()
        return [key for key in keys if self._entry(key, entries.get(key)) is None]

    def put_many(self, items: Dict[str, T]) -> None:
        """Upsert values; every written entry gets a fresh cached_at."""
        if not items:
            return
        entries = self._load()
        now = self._clock()
        for key, value in items.items():
            payload = self._encode(value)
            payload["cached_at"] = now
            entries[key] = payload
        self._save(entries)

    def put(self, key: str, value: T) -> None:
        self.put_many({key: value})

    def clear(self) -> None:
        try:
            self._storage.remove(self._key)
        except Exception as e:
            logger.warning("cache_clear_failed", namespace=self._key, error=str(e))

    def clear_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        entries = self._load()
        now = self._clock()
        kept = {
            key: raw for key, raw in entries.items()
            if isinstance(raw, dict)
            and isinstance(raw.get("cached_at"), (int, float))
            and now - raw["cached_at"] < self.ttl_seconds
        }
        removed = len(entries) - len(kept)
        if removed:
            self._save(kept)
        return removed

    def stats(self) -> Dict[str, int]:
        entries = self._load()
        valid = sum(1 for key, raw in entries.items() if self._entry(key, raw) is not None)
        return {"total": len(entries), "valid": valid, "expired": len(entries) - valid}


def _encode_profile(profile: NodeProfile) -> Dict[str, Any]:
    return profile.to_dict()


def _decode_profile(key: str, raw: Dict[str, Any]) -> NodeProfile:
    data = dict(raw)
    data["pubkey"] = data.get("pubkey") or key
    return NodeProfile.from_dict(data)


class LocalCache:
    """
    Profile and trust-fact cache over one key-value storage.

    On construction the trust namespace is migrated: if the stored format
    version is older than CURRENT_TRUST_CACHE_VERSION the whole namespace is
    removed and the current version recorded.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        scoring: ScoringConfig = DEFAULT_SCORING_CONFIG,
        trust_version: int = CURRENT_TRUST_CACHE_VERSION,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self.scoring = scoring
        self.trust_version = trust_version

        self.profiles: CacheNamespace[NodeProfile] = CacheNamespace(
            self.storage,
            PROFILE_CACHE_KEY,
            encode=_encode_profile,
            decode=_decode_profile,
            ttl_seconds=ttl_seconds,
            clock=clock,
        )
        self.trust: CacheNamespace[TrustFact] = CacheNamespace(
            self.storage,
            TRUST_CACHE_KEY,
            encode=self._encode_trust,
            decode=self._decode_trust,
            ttl_seconds=ttl_seconds,
            clock=clock,
            required_fields=("score",),
        )
        self._migrate_trust_namespace()

    def _migrate_trust_namespace(self) -> None:
        try:
            stored = self.storage.get(TRUST_CACHE_VERSION_KEY)
        except Exception as e:
            logger.warning("cache_version_read_failed", error=str(e))
            stored = None
        try:
            version = int(stored) if stored else 0
        except ValueError:
            version = 0

        if version >= self.trust_version:
            return
        try:
            self.storage.remove(TRUST_CACHE_KEY)
            self.storage.set(TRUST_CACHE_VERSION_KEY, str(self.trust_version))
            logger.info(
                "trust_cache_purged",
                stored_version=version,
                current_version=self.trust_version,
            )
        except Exception as e:
            logger.warning("trust_cache_migration_failed", error=str(e))

    def _score(self, distance: Optional[int], paths: Optional[int]) -> Optional[float]:
        if distance is None or distance < 0:
            return None
        return trust_score(distance, max(paths or 1, 1), self.scoring)

    def _encode_trust(self, fact: TrustFact) -> Dict[str, Any]:
        return {
            "distance": fact.distance,
            "paths": fact.paths,
            "score": self._score(fact.distance, fact.paths),
        }

    def _decode_trust(self, key: str, raw: Dict[str, Any]) -> TrustFact:
        distance = raw.get("distance")
        paths = raw.get("paths")
        if distance is not None:
            distance = int(distance)
        if paths is not None:
            paths = int(paths)
        return TrustFact(distance=distance, paths=paths, score=self._score(distance, paths))

    @property
    def hit_rate(self) -> float:
        """Hits / lookups across both namespaces (0.0 before any lookup)."""
        hits = self.profiles.hits + self.trust.hits
        lookups = hits + self.profiles.misses + self.trust.misses
        return hits / lookups if lookups else 0.0

    def clear(self) -> None:
        self.profiles.clear()
        self.trust.clear()
