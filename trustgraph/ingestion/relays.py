# trustgraph/ingestion/relays.py
"""
Multi-relay event fetcher.

Opens one websocket subscription per relay (NIP-01 framing):
    -> ["REQ", <sub_id>, <filter>]
    <- ["EVENT", <sub_id>, <event>] ...
    <- ["EOSE", <sub_id>]
    -> ["CLOSE", <sub_id>]

All relays share one result map keyed by event id (first copy wins). A
fetch completes when every relay is done or the time budget elapses,
whichever comes first, and returns whatever was collected. Sockets still
open at that point are closed in the background, outside the budget. Relays are
untrusted: malformed payloads are dropped one by one and connection
failures only shrink the result.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import websockets
from pydantic import BaseModel, Field, ValidationError
from websockets.exceptions import ConnectionClosed

from ..logging import get_logger, get_relay_logger
from ..settings import settings

logger = get_logger(__name__)

# Event kinds used by the graph
KIND_PROFILE = 0
KIND_NOTE = 1
KIND_CONTACTS = 3


class NostrEvent(BaseModel):
    """Relay event. Anything failing validation is dropped."""
    id: str
    pubkey: str
    kind: int
    created_at: int
    content: str = ""
    tags: List[List[str]] = Field(default_factory=list)
    sig: Optional[str] = None


@dataclass(frozen=True)
class RelayFilter:
    """Subscription filter sent with REQ."""
    kinds: Tuple[int, ...]
    authors: Tuple[str, ...] = ()
    limit: Optional[int] = None
    until: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kinds": list(self.kinds)}
        if self.authors:
            data["authors"] = list(self.authors)
        if self.limit is not None:
            data["limit"] = self.limit
        if self.until is not None:
            data["until"] = self.until
        return data


def _new_subscription_id() -> str:
    return f"tg-{uuid.uuid4().hex[:12]}"


class MultiSourceFetcher:
    """
    Fan-out query across relays under a single time budget.

    Example:
        fetcher = MultiSourceFetcher()
        events = await fetcher.fetch(
            RelayFilter(kinds=(3,), authors=(pubkey,), limit=1),
            timeout=settings.follows_timeout_seconds,
        )
    """

    def __init__(
        self,
        relay_urls: Optional[Sequence[str]] = None,
        connect: Callable[..., Any] = websockets.connect,
        connect_timeout: Optional[float] = None,
        close_timeout: Optional[float] = None,
    ):
        """
        Args:
            relay_urls: Relays to query (defaults to settings.relay_urls)
            connect: websockets.connect-compatible factory; returns an async
                context manager yielding a socket with send() and async iteration
            connect_timeout: Per-relay handshake timeout in seconds
            close_timeout: Per-relay close handshake timeout in seconds
        """
        self.relay_urls = list(relay_urls if relay_urls is not None else settings.relay_urls)
        self._connect = connect
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None
            else settings.relay_connect_timeout_seconds
        )
        self.close_timeout = (
            close_timeout if close_timeout is not None
            else settings.relay_close_timeout_seconds
        )
        self._closing: Set[asyncio.Task] = set()

    async def fetch(
        self,
        relay_filter: RelayFilter,
        timeout: float,
        relay_urls: Optional[Sequence[str]] = None,
        max_relays: Optional[int] = None,
    ) -> Dict[str, NostrEvent]:
        """
        Query relays and collect deduplicated events.

        Args:
            relay_filter: Subscription filter
            timeout: Overall time budget in seconds
            relay_urls: Override the configured relays for this call
            max_relays: Only query the first N relays

        Returns:
            Dict of event id -> event. Possibly partial, possibly empty; never raises
            for relay failures or timeouts.
        """
        urls = list(relay_urls if relay_urls is not None else self.relay_urls)
        if max_relays is not None:
            urls = urls[:max_relays]

        events: Dict[str, NostrEvent] = {}
        if not urls:
            return events

        sub_id = _new_subscription_id()
        tasks = [
            asyncio.create_task(self._subscribe(url, sub_id, relay_filter, events))
            for url in urls
        ]

        try:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
        finally:
            # Also runs when the caller is cancelled
            for task in tasks:
                if not task.done():
                    task.cancel()
                    self._closing.add(task)
                    task.add_done_callback(self._closing.discard)

        if pending:
            logger.info(
                "relay_fetch_timeout",
                kinds=list(relay_filter.kinds),
                pending_relays=len(pending),
                events=len(events),
            )

        return events

    @property
    def pending_closes(self) -> int:
        """Cancelled subscriptions still closing their sockets."""
        return len(self._closing)

    async def wait_closed(self) -> None:
        """Wait for background socket closes to finish."""
        while self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def close(self) -> None:
        """Abort background socket closes."""
        tasks = list(self._closing)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._closing.clear()

    async def _subscribe(
        self,
        url: str,
        sub_id: str,
        relay_filter: RelayFilter,
        events: Dict[str, NostrEvent],
    ) -> None:
        """Run one subscription until EOSE, close, or error."""
        relay_logger = get_relay_logger(url)
        wanted_kinds = set(relay_filter.kinds)

        try:
            async with self._connect(
                url,
                open_timeout=self.connect_timeout,
                close_timeout=self.close_timeout,
            ) as ws:
                await ws.send(json.dumps(["REQ", sub_id, relay_filter.to_dict()]))

                async for raw in ws:
                    message = _decode_message(raw)
                    if message is None:
                        relay_logger.debug("relay_message_malformed")
                        continue

                    label = message[0]
                    if label == "EVENT":
                        event = _decode_event(message, wanted_kinds)
                        if event is None:
                            relay_logger.debug("relay_event_dropped")
                            continue
                        events.setdefault(event.id, event)
                    elif label == "EOSE":
                        await ws.send(json.dumps(["CLOSE", sub_id]))
                        return
                    elif label == "CLOSED":
                        relay_logger.debug("relay_subscription_closed")
                        return
                    elif label == "NOTICE":
                        relay_logger.debug("relay_notice", notice=str(message[1:])[:200])
        except ConnectionClosed as e:
            relay_logger.debug("relay_connection_closed", error=str(e))
        except Exception as e:
            relay_logger.warning("relay_error", error=str(e))


def _decode_message(raw: Any) -> Optional[List[Any]]:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, list) or not message or not isinstance(message[0], str):
        return None
    return message


def _decode_event(message: List[Any], wanted_kinds: set) -> Optional[NostrEvent]:
    if len(message) < 3 or not isinstance(message[2], dict):
        return None
    try:
        event = NostrEvent.model_validate(message[2])
    except ValidationError:
        return None
    if event.kind not in wanted_kinds:
        return None
    return event
