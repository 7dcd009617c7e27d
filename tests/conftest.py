# tests/conftest.py
"""
Pytest configuration and fixtures.

No test touches the network: relays are replaced by an in-process fake
websocket network and the trust provider by an in-memory fake.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from trustgraph.cache.profile_cache import LocalCache
from trustgraph.cache.storage import MemoryStorage
from trustgraph.errors import ProviderUnavailableError
from trustgraph.ingestion.provider import DistanceInfo, TrustProvider
from trustgraph.ingestion.relays import MultiSourceFetcher


# ============================================================
# CLOCK
# ============================================================

class FakeClock:
    """Manually advanced clock (epoch seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================
# RELAYS
# ============================================================

def make_event(
    event_id: str,
    pubkey: str,
    kind: int = 1,
    created_at: int = 1_700_000_000,
    content: str = "",
    tags: Optional[List[List[str]]] = None,
) -> Dict[str, Any]:
    return {
        "id": event_id,
        "pubkey": pubkey,
        "kind": kind,
        "created_at": created_at,
        "content": content,
        "tags": tags or [],
        "sig": "00" * 32,
    }


_CLOSE = object()

EventSource = Union[List[Dict[str, Any]], Callable[[Dict[str, Any]], List[Dict[str, Any]]]]


class FakeRelay:
    """
    Scripted relay behaviour.

    Args:
        events: Events to send after REQ, or a callable(filter) -> events
        raw: Raw frames sent before the events (for malformed payload tests)
        eose: Send EOSE after the events
        hang: Keep the socket open without EOSE
        fail_connect: Raise on connect
        close_delay: Seconds the close handshake takes
    """

    def __init__(
        self,
        events: EventSource = (),
        raw: Sequence[str] = (),
        eose: bool = True,
        hang: bool = False,
        fail_connect: bool = False,
        close_delay: float = 0,
    ):
        self.events = events
        self.raw = list(raw)
        self.eose = eose
        self.hang = hang
        self.fail_connect = fail_connect
        self.close_delay = close_delay
        self.requests: List[Dict[str, Any]] = []

    def frames(self, sub_id: str, relay_filter: Dict[str, Any]) -> List[Any]:
        self.requests.append(relay_filter)
        events = self.events(relay_filter) if callable(self.events) else list(self.events)
        frames: List[Any] = list(self.raw)
        frames.extend(json.dumps(["EVENT", sub_id, event]) for event in events)
        if self.hang:
            return frames
        if self.eose:
            frames.append(json.dumps(["EOSE", sub_id]))
        else:
            frames.append(_CLOSE)
        return frames


class FakeSocket:
    def __init__(self, relay: FakeRelay):
        self.relay = relay
        self.sent: List[List[Any]] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if message[0] == "REQ":
            for frame in self.relay.frames(message[1], message[2]):
                self._frames.put_nowait(frame)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        frame = await self._frames.get()
        if frame is _CLOSE:
            raise StopAsyncIteration
        return frame


class _FakeConnection:
    def __init__(self, network: "FakeRelayNetwork", url: str):
        self.network = network
        self.url = url
        self.socket: Optional[FakeSocket] = None

    async def __aenter__(self) -> FakeSocket:
        relay = self.network.relays[self.url]
        self.network.connect_calls.append(self.url)
        if relay.fail_connect:
            raise OSError(f"connection refused: {self.url}")
        self.socket = FakeSocket(relay)
        self.network.sockets.append(self.socket)
        return self.socket

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.socket is not None:
            if self.socket.relay.close_delay:
                await asyncio.sleep(self.socket.relay.close_delay)
            self.socket.closed = True
        return False


class FakeRelayNetwork:
    """Stand-in for websockets.connect over a dict of scripted relays."""

    def __init__(self, relays: Dict[str, FakeRelay]):
        self.relays = relays
        self.sockets: List[FakeSocket] = []
        self.connect_calls: List[str] = []
        self.connect_kwargs: List[Dict[str, Any]] = []

    def connect(self, url: str, **kwargs: Any) -> _FakeConnection:
        self.connect_kwargs.append(kwargs)
        return _FakeConnection(self, url)

    def fetcher(self) -> MultiSourceFetcher:
        return MultiSourceFetcher(
            list(self.relays), connect=self.connect, connect_timeout=1, close_timeout=0.5
        )


# ============================================================
# PROVIDER
# ============================================================

class FakeProvider(TrustProvider):
    """In-memory trust provider with call counters."""

    def __init__(
        self,
        follows: Optional[Dict[str, List[str]]] = None,
        distances: Optional[Dict[str, DistanceInfo]] = None,
        my_pubkey: str = "R",
        available: bool = True,
    ):
        self.follows = follows or {}
        self.distances = distances or {}
        self.my_pubkey = my_pubkey
        self.available = available
        self.follow_calls: List[str] = []
        self.distance_calls: List[List[str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_follows: Optional[Exception] = None
        self.fail_distances: Optional[Exception] = None

    async def is_available(self) -> bool:
        return self.available

    async def get_my_pubkey(self) -> str:
        if not self.available:
            raise ProviderUnavailableError("fake provider not ready")
        return self.my_pubkey

    async def get_follows(self, pubkey: str) -> List[str]:
        self.follow_calls.append(pubkey)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_follows is not None:
            raise self.fail_follows
        return list(self.follows.get(pubkey, []))

    async def get_distance_batch(self, pubkeys: Sequence[str]) -> Dict[str, DistanceInfo]:
        self.distance_calls.append(list(pubkeys))
        if self.fail_distances is not None:
            raise self.fail_distances
        return {key: self.distances[key] for key in pubkeys if key in self.distances}

    async def get_trust_score_batch(self, pubkeys: Sequence[str]) -> Dict[str, float]:
        return {}


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage, clock):
    return LocalCache(storage, clock=clock)


@pytest.fixture
def empty_network():
    return FakeRelayNetwork({})


@pytest.fixture
def provider():
    return FakeProvider(follows={"R": ["A", "B"], "A": ["B", "C"]})
