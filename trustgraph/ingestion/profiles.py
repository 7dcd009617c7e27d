# trustgraph/ingestion/profiles.py
"""
Profile metadata lookups (kind 0).

Cached profiles are served first; misses are fetched from relays in
batches, parsed, and written back to the cache. Profile lookups only use
the first PROFILE_RELAY_COUNT relays.
"""

import json
from typing import Dict, List, Optional, Sequence

from ..cache.profile_cache import LocalCache
from ..graph.models import NodeProfile
from ..logging import get_logger
from ..settings import settings
from .relays import KIND_PROFILE, MultiSourceFetcher, NostrEvent, RelayFilter

logger = get_logger(__name__)

PROFILE_RELAY_COUNT = 2


def parse_profile(event: NostrEvent) -> Optional[NodeProfile]:
    """
    Parse a kind-0 event. Content must be a JSON object.

    Returns:
        NodeProfile, or None for malformed content
    """
    try:
        content = json.loads(event.content)
    except (TypeError, ValueError):
        return None
    if not isinstance(content, dict):
        return None

    def text_field(name: str) -> Optional[str]:
        value = content.get(name)
        return value if isinstance(value, str) and value else None

    return NodeProfile(
        pubkey=event.pubkey,
        name=text_field("name"),
        display_name=text_field("display_name") or text_field("displayName"),
        picture=text_field("picture"),
        about=text_field("about"),
        nip05=text_field("nip05"),
    )


def newest_profiles(events: Dict[str, NostrEvent]) -> Dict[str, NodeProfile]:
    """Newest parseable profile per author."""
    newest_at: Dict[str, int] = {}
    profiles: Dict[str, NodeProfile] = {}
    for event in events.values():
        if event.pubkey in newest_at and event.created_at <= newest_at[event.pubkey]:
            continue
        profile = parse_profile(event)
        if profile is None:
            continue
        newest_at[event.pubkey] = event.created_at
        profiles[event.pubkey] = profile
    return profiles


class ProfileFetcher:
    """Cache-first profile lookups for many identities."""

    def __init__(
        self,
        fetcher: MultiSourceFetcher,
        cache: Optional[LocalCache] = None,
        timeout: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.timeout = timeout if timeout is not None else settings.profile_timeout_seconds
        self.batch_size = batch_size or settings.profile_batch_size

    async def get_profiles(self, pubkeys: Sequence[str]) -> Dict[str, NodeProfile]:
        """
        Profiles for the requested identities.

        Args:
            pubkeys: Identities to look up

        Returns:
            Dict of pubkey -> profile; identities without a profile are omitted
        """
        wanted = list(dict.fromkeys(pubkeys))
        if not wanted:
            return {}

        profiles: Dict[str, NodeProfile] = {}
        if self.cache is not None:
            profiles.update(self.cache.profiles.get_many(wanted))
        missing = [key for key in wanted if key not in profiles]

        fetched: Dict[str, NodeProfile] = {}
        for batch in _chunks(missing, self.batch_size):
            events = await self.fetcher.fetch(
                RelayFilter(kinds=(KIND_PROFILE,), authors=tuple(batch), limit=len(batch)),
                timeout=self.timeout,
                max_relays=PROFILE_RELAY_COUNT,
            )
            requested = set(batch)
            fetched.update({
                key: profile for key, profile in newest_profiles(events).items()
                if key in requested
            })

        if fetched and self.cache is not None:
            self.cache.profiles.put_many(fetched)

        logger.debug(
            "profiles_fetched",
            requested=len(wanted),
            cached=len(profiles),
            fetched=len(fetched),
        )
        profiles.update(fetched)
        return profiles

    async def get_profile(self, pubkey: str) -> Optional[NodeProfile]:
        return (await self.get_profiles([pubkey])).get(pubkey)


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]
