# trustgraph/ingestion/feed.py
"""
Backward-paginated note feed (kind 1) for one identity.

Pages are fetched newest first. The cursor is the oldest timestamp seen;
the next page asks for events strictly older (until = oldest - 1).

has_more is a heuristic: a page with at least page_size new notes means
there may be more. At an exact boundary this costs one extra empty page.
"""

from typing import Dict, List, Optional

from ..graph.models import Note
from ..logging import get_logger
from ..settings import settings
from .relays import KIND_NOTE, MultiSourceFetcher, NostrEvent, RelayFilter

logger = get_logger(__name__)


def _to_note(event: NostrEvent) -> Note:
    return Note(
        id=event.id,
        pubkey=event.pubkey,
        content=event.content,
        created_at=event.created_at,
        tags=event.tags,
        sig=event.sig,
    )


class FeedPager:
    """
    Accumulating feed for one identity.

    Example:
        pager = FeedPager(fetcher)
        await pager.fetch(pubkey)
        while pager.has_more:
            await pager.load_more()
    """

    def __init__(
        self,
        fetcher: MultiSourceFetcher,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.fetcher = fetcher
        self.page_size = page_size or settings.feed_page_size
        self.timeout = timeout if timeout is not None else settings.feed_timeout_seconds
        self._generation = 0
        self.reset()

    def reset(self) -> None:
        """Forget the current identity and every loaded page."""
        self._generation += 1
        self.pubkey: Optional[str] = None
        self.notes: List[Note] = []
        self.is_loading = False
        self.has_more = True
        self.oldest_timestamp: Optional[int] = None

    async def _fetch_page(self, pubkey: str, until: Optional[int]) -> List[Note]:
        events = await self.fetcher.fetch(
            RelayFilter(
                kinds=(KIND_NOTE,),
                authors=(pubkey,),
                limit=self.page_size,
                until=until,
            ),
            timeout=self.timeout,
        )
        notes = [_to_note(e) for e in events.values() if e.pubkey == pubkey]
        notes.sort(key=lambda n: n.created_at, reverse=True)
        return notes

    async def fetch(self, pubkey: str) -> List[Note]:
        """Start a new feed for pubkey and load its first page."""
        self.reset()
        generation = self._generation
        self.pubkey = pubkey
        self.is_loading = True
        try:
            notes = await self._fetch_page(pubkey, until=None)
        finally:
            if generation == self._generation:
                self.is_loading = False

        if generation != self._generation:
            return self.notes

        self.notes = notes
        if notes:
            self.oldest_timestamp = notes[-1].created_at
        self.has_more = len(notes) >= self.page_size
        logger.debug("feed_first_page", pubkey=pubkey[:8], notes=len(notes), has_more=self.has_more)
        return self.notes

    async def load_more(self) -> List[Note]:
        """
        Load the next older page.

        No-op when no feed is active, a load is in flight, or has_more is False.

        Returns:
            Notes added by this page
        """
        if not self.pubkey or self.oldest_timestamp is None or self.is_loading or not self.has_more:
            return []

        generation = self._generation
        pubkey = self.pubkey
        self.is_loading = True
        try:
            page = await self._fetch_page(pubkey, until=self.oldest_timestamp - 1)
        finally:
            if generation == self._generation:
                self.is_loading = False

        if generation != self._generation:
            return []

        known: Dict[str, Note] = {n.id: n for n in self.notes}
        new_notes = [n for n in page if n.id not in known]
        if new_notes:
            self.notes = self.notes + new_notes
            self.oldest_timestamp = new_notes[-1].created_at
        self.has_more = len(new_notes) >= self.page_size
        logger.debug("feed_page_loaded", pubkey=pubkey[:8], notes=len(new_notes), has_more=self.has_more)
        return new_notes
