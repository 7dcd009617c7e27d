# trustgraph/ingestion/follows.py
"""
Follow lists read directly from relays (kind 3 contact lists).

Used as a fallback when the trust provider returns an empty list. The
newest contact list wins; follows are the "p" tags in order, deduplicated.
"""

from typing import List, Optional

from ..logging import get_logger
from ..settings import settings
from .relays import KIND_CONTACTS, MultiSourceFetcher, NostrEvent, RelayFilter

logger = get_logger(__name__)


def follows_from_contact_list(event: NostrEvent) -> List[str]:
    """Ordered, deduplicated pubkeys from a contact list's p tags."""
    seen = set()
    follows: List[str] = []
    for tag in event.tags:
        if len(tag) < 2 or tag[0] != "p":
            continue
        pubkey = tag[1]
        if pubkey and pubkey not in seen:
            seen.add(pubkey)
            follows.append(pubkey)
    return follows


class RelayFollowListSource:
    """Newest contact list for an identity, across all relays."""

    def __init__(self, fetcher: MultiSourceFetcher, timeout: Optional[float] = None):
        self.fetcher = fetcher
        self.timeout = timeout if timeout is not None else settings.follows_timeout_seconds

    async def get_follows(self, pubkey: str) -> List[str]:
        events = await self.fetcher.fetch(
            RelayFilter(kinds=(KIND_CONTACTS,), authors=(pubkey,), limit=1),
            timeout=self.timeout,
        )
        candidates = [e for e in events.values() if e.pubkey == pubkey]
        if not candidates:
            logger.debug("contact_list_not_found", pubkey=pubkey[:8])
            return []

        newest = max(candidates, key=lambda e: e.created_at)
        return follows_from_contact_list(newest)
