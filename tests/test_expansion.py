# tests/test_expansion.py
"""
Test incremental expansion.

Verifies the per-node state machine, single-flight fetching, distance
cut-off, corroborated scores, distance resolution and that work started
for an abandoned root never lands in the new one.
"""

import asyncio

import httpx
import pytest

from trustgraph.errors import (
    ProviderNetworkError,
    ProviderRequestError,
    ProviderUnavailableError,
    UnavailableCapabilityError,
)
from trustgraph.graph.commands import MergeData, SetRoot
from trustgraph.graph.models import GraphEdge, GraphNode, NodeProfile, TrustFact
from trustgraph.graph.scoring import trust_score
from trustgraph.graph.store import GraphStateStore
from trustgraph.graph.traversal import (
    ExpansionController,
    ExpansionState,
    InvalidTransitionError,
    find_trust_path,
)
from trustgraph.ingestion.follows import RelayFollowListSource
from trustgraph.ingestion.profiles import ProfileFetcher
from trustgraph.ingestion.provider import DistanceInfo, OracleTrustProvider

from conftest import FakeProvider, FakeRelay, FakeRelayNetwork, make_event


def rooted_store(root_id="R"):
    store = GraphStateStore()
    store.dispatch(SetRoot(GraphNode(id=root_id, label=root_id, distance=0, trust_score=1.0)))
    return store


@pytest.fixture
def store():
    return rooted_store()


class TestExpansionStateMachine:
    """Tests for the per-node lifecycle."""

    @pytest.mark.asyncio
    async def test_expand_root(self, store, provider):
        controller = ExpansionController(store, provider)

        assert await controller.expand("R") is True

        state = store.state
        assert set(state.nodes) == {"R", "A", "B"}
        assert set(state.links) == {("R", "A"), ("R", "B")}
        assert controller.state_of("R") == ExpansionState.EXPANDED
        assert controller.state_of("A") == ExpansionState.UNEXPANDED
        assert not state.is_loading

    @pytest.mark.asyncio
    async def test_expanded_node_not_refetched(self, store, provider):
        controller = ExpansionController(store, provider)
        await controller.expand("R")

        assert await controller.expand("R") is False
        assert provider.follow_calls == ["R"]

    @pytest.mark.asyncio
    async def test_concurrent_expand_fetches_once(self, store, provider):
        provider.gate = asyncio.Event()
        controller = ExpansionController(store, provider)

        first = asyncio.create_task(controller.expand("R"))
        await asyncio.sleep(0)
        assert controller.state_of("R") == ExpansionState.EXPANDING
        assert controller.in_flight == {"R"}

        second = await controller.expand("R")
        provider.gate.set()

        assert await first is True
        assert second is False
        assert provider.follow_calls == ["R"]
        assert controller.in_flight == set()

    @pytest.mark.asyncio
    async def test_unknown_node_is_noop(self, store, provider):
        controller = ExpansionController(store, provider)
        assert await controller.expand("nobody") is False
        assert provider.follow_calls == []

    @pytest.mark.asyncio
    async def test_max_distance_is_noop(self, store):
        provider = FakeProvider(follows={"R": ["A"], "A": ["B"], "B": ["C"], "C": ["D"]})
        controller = ExpansionController(store, provider, max_distance=3)

        for node_id in ("R", "A", "B"):
            assert await controller.expand(node_id) is True

        assert store.get_node("C").distance == 3
        assert await controller.expand("C") is False
        assert "C" not in provider.follow_calls
        assert "D" not in store.state.nodes

    def test_invalid_transition(self, store, provider):
        controller = ExpansionController(store, provider)
        with pytest.raises(InvalidTransitionError):
            controller._transition("R", ExpansionState.EXPANDED, store.generation)


class TestProviderFailures:
    """Tests for missing, unready and failing providers."""

    @pytest.mark.asyncio
    async def test_no_provider(self, store):
        controller = ExpansionController(store, None)

        with pytest.raises(UnavailableCapabilityError) as exc_info:
            await controller.expand("R")

        assert exc_info.value.capability == "trust_provider"
        assert controller.state_of("R") == ExpansionState.UNEXPANDED
        assert not store.state.is_loading

    @pytest.mark.asyncio
    async def test_provider_not_ready(self, store):
        provider = FakeProvider(follows={"R": ["A"]}, available=False)
        controller = ExpansionController(store, provider)

        with pytest.raises(UnavailableCapabilityError):
            await controller.expand("R")
        assert provider.follow_calls == []

    @pytest.mark.asyncio
    async def test_provider_unavailable_mid_call(self, store, provider):
        provider.fail_follows = ProviderUnavailableError("went away")
        controller = ExpansionController(store, provider)

        with pytest.raises(UnavailableCapabilityError):
            await controller.expand("R")

    @pytest.mark.asyncio
    async def test_request_failure_allows_retry(self, store, provider):
        provider.fail_follows = ProviderRequestError(502, "bad gateway")
        controller = ExpansionController(store, provider)

        assert await controller.expand("R") is False
        assert controller.state_of("R") == ExpansionState.UNEXPANDED
        assert list(store.state.nodes) == ["R"]

        provider.fail_follows = None
        assert await controller.expand("R") is True
        assert provider.follow_calls == ["R", "R"]

    @pytest.mark.asyncio
    async def test_network_error_degrades_and_allows_retry(self, store, provider):
        provider.fail_follows = ProviderNetworkError("read timed out")
        controller = ExpansionController(store, provider)

        assert await controller.expand("R") is False
        assert controller.state_of("R") == ExpansionState.UNEXPANDED
        assert store.state.error is None
        assert not store.state.is_loading

        provider.fail_follows = None
        assert await controller.expand("R") is True


def oracle(routes):
    """OracleTrustProvider over a MockTransport; routes maps path -> handler."""

    def handler(request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        return routes[request.url.path](request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://oracle.test")
    return OracleTrustProvider(base_url="http://oracle.test", my_pubkey="R", client=client)


class TestOracleFailures:
    """A ready oracle that misbehaves never surfaces an error."""

    @pytest.mark.asyncio
    async def test_non_json_follows(self, store):
        provider = oracle({"/follows": lambda request: httpx.Response(200, text="<html>bad gateway</html>")})
        controller = ExpansionController(store, provider)

        assert await controller.expand("R") is False
        assert controller.state_of("R") == ExpansionState.UNEXPANDED
        assert list(store.state.nodes) == ["R"]

    @pytest.mark.asyncio
    async def test_read_timeout_on_follows(self, store):
        def timeout(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        controller = ExpansionController(store, oracle({"/follows": timeout}))

        assert await controller.expand("R") is False
        assert controller.state_of("R") == ExpansionState.UNEXPANDED

    @pytest.mark.asyncio
    async def test_non_json_distances_fall_back_to_parent(self, store, cache):
        provider = oracle({
            "/follows": lambda request: httpx.Response(200, json={"follows": ["A"]}),
            "/distance/batch": lambda request: httpx.Response(200, text="not json"),
        })
        controller = ExpansionController(store, provider, cache=cache)

        assert await controller.expand("R") is True
        await controller.wait_for_background()

        assert store.get_node("A").distance == 1
        assert cache.trust.get("A") is None


class TestDiscovery:
    """Tests for node creation, corroboration and distance resolution."""

    @pytest.mark.asyncio
    async def test_corroborated_scores(self, store, provider):
        controller = ExpansionController(store, provider)

        await controller.expand("R")
        await controller.expand("A")

        nodes = store.state.nodes
        assert nodes["A"].trust_score == 1.0
        assert nodes["B"].path_count == 2
        assert nodes["B"].trust_score == 1.0
        assert nodes["B"].distance == 1
        assert nodes["C"].distance == 2
        assert nodes["C"].trust_score == 0.5
        assert len(store.state.links) == 4

    @pytest.mark.asyncio
    async def test_follow_list_deduped_without_self(self, store):
        provider = FakeProvider(follows={"R": ["A", "R", "A", "B"]})
        controller = ExpansionController(store, provider)

        await controller.expand("R")

        assert set(store.state.nodes) == {"R", "A", "B"}
        assert ("R", "R") not in store.state.links

    @pytest.mark.asyncio
    async def test_mutual_follow_of_root(self, store):
        provider = FakeProvider(follows={"R": ["A"], "A": ["R", "B"]})
        controller = ExpansionController(store, provider)

        await controller.expand("R")
        await controller.expand("A")

        state = store.state
        assert state.nodes["A"].is_mutual
        assert state.links[("R", "A")].bidirectional
        assert state.links[("A", "R")].bidirectional
        assert not state.nodes["B"].is_mutual

    @pytest.mark.asyncio
    async def test_provider_distances_used_and_cached(self, store, cache):
        provider = FakeProvider(
            follows={"R": ["A"], "A": ["C"]},
            distances={"C": DistanceInfo(distance=2, paths=3)},
        )
        controller = ExpansionController(store, provider, cache=cache)

        await controller.expand("R")
        await controller.expand("A")

        c = store.get_node("C")
        assert c.distance == 2
        assert c.path_count == 3
        assert c.trust_score == pytest.approx(trust_score(2, 3))
        assert cache.trust.get("C").paths == 3

    @pytest.mark.asyncio
    async def test_cached_distances_skip_provider(self, store, cache):
        cache.trust.put("C", TrustFact(distance=2, paths=2))
        provider = FakeProvider(follows={"R": ["A"], "A": ["C"]})
        controller = ExpansionController(store, provider, cache=cache)

        await controller.expand("R")
        await controller.expand("A")

        assert provider.distance_calls == [["A"]]
        assert store.get_node("C").path_count == 2

    @pytest.mark.asyncio
    async def test_distance_failure_falls_back_to_parent(self, store, provider):
        provider.fail_distances = ProviderUnavailableError("resolver down")
        controller = ExpansionController(store, provider)

        assert await controller.expand("R") is True
        assert store.get_node("A").distance == 1
        assert store.get_node("A").path_count == 1

    @pytest.mark.asyncio
    async def test_unknown_paths_refreshed_in_background(self, store, cache):
        provider = FakeProvider(
            follows={"R": ["A"], "A": ["C"]},
            distances={"C": DistanceInfo(distance=2)},
        )
        controller = ExpansionController(store, provider, cache=cache)
        await controller.expand("R")
        await controller.expand("A")
        assert store.get_node("C").path_count == 1

        provider.distances["C"] = DistanceInfo(distance=2, paths=4)
        await controller.wait_for_background()

        assert cache.trust.get("C").paths == 4
        # The background refresh only updates the cache
        assert store.get_node("C").path_count == 1

    @pytest.mark.asyncio
    async def test_unreachable_identities_cached(self, store, cache):
        provider = FakeProvider(
            follows={"R": ["A"], "A": ["C"]},
            distances={"C": DistanceInfo(distance=None)},
        )
        controller = ExpansionController(store, provider, cache=cache)
        await controller.expand("R")
        await controller.expand("A")
        await controller.wait_for_background()

        assert store.get_node("C").distance == 2
        assert cache.trust.get("C").distance is None
        assert provider.distance_calls == [["A"], ["C"]]

        # A later exploration reads the cached answer instead of asking again
        again = rooted_store()
        controller = ExpansionController(again, provider, cache=cache)
        await controller.expand("R")
        await controller.expand("A")

        assert again.get_node("C").distance == 2
        assert provider.distance_calls == [["A"], ["C"], ["A"]]

    @pytest.mark.asyncio
    async def test_relay_fallback_for_empty_follow_list(self, store):
        network = FakeRelayNetwork({
            "wss://one": FakeRelay([
                make_event("c1", "R", kind=3, tags=[["p", "X"], ["p", "Y"]]),
            ]),
        })
        provider = FakeProvider(follows={})
        controller = ExpansionController(
            store, provider, follow_source=RelayFollowListSource(network.fetcher(), timeout=1)
        )

        assert await controller.expand("R") is True
        assert set(store.state.nodes) == {"R", "X", "Y"}

    @pytest.mark.asyncio
    async def test_labels_from_cached_profiles(self, store, cache, provider):
        cache.profiles.put("A", NodeProfile(pubkey="A", display_name="Alice", picture="https://a/p.png"))
        controller = ExpansionController(store, provider, cache=cache)

        await controller.expand("R")

        a = store.get_node("A")
        assert a.label == "Alice"
        assert a.picture == "https://a/p.png"
        assert store.get_node("B").label == "B"

    @pytest.mark.asyncio
    async def test_profiles_loaded_in_background(self, store, cache, provider):
        network = FakeRelayNetwork({
            "wss://one": FakeRelay([
                make_event("p1", "A", kind=0, content='{"name": "alice"}'),
            ]),
        })
        fetcher = ProfileFetcher(network.fetcher(), cache=cache, timeout=1)
        controller = ExpansionController(store, provider, cache=cache, profile_fetcher=fetcher)

        await controller.expand("R")
        await controller.wait_for_background()

        assert store.state.profiles["A"].name == "alice"
        assert cache.profiles.get("A").name == "alice"


class TestRootChange:
    """Work started for an old root never lands in a new one."""

    @pytest.mark.asyncio
    async def test_results_discarded_after_root_change(self, store, provider):
        provider.gate = asyncio.Event()
        controller = ExpansionController(store, provider)

        pending = asyncio.create_task(controller.expand("R"))
        await asyncio.sleep(0)
        store.dispatch(SetRoot(GraphNode(id="X", label="X", distance=0)))
        provider.gate.set()

        assert await pending is False
        state = store.state
        assert list(state.nodes) == ["X"]
        assert state.expanded == frozenset()
        assert not state.is_loading
        assert controller.in_flight == set()

    @pytest.mark.asyncio
    async def test_same_id_expandable_under_new_root(self, store, provider):
        provider.gate = asyncio.Event()
        controller = ExpansionController(store, provider)

        pending = asyncio.create_task(controller.expand("R"))
        await asyncio.sleep(0)
        store.dispatch(SetRoot(GraphNode(id="R", label="R", distance=0)))
        assert controller.state_of("R") == ExpansionState.UNEXPANDED

        provider.gate.set()
        assert await controller.expand("R") is True
        assert await pending is False
        assert set(store.state.nodes) == {"R", "A", "B"}


class TestTrustPath:

    def test_shortest_path(self, store):
        store.dispatch(MergeData(
            nodes=(
                GraphNode(id="A", label="A", distance=1, trust_score=1.0),
                GraphNode(id="B", label="B", distance=1, trust_score=1.0),
                GraphNode(id="C", label="C", distance=2, trust_score=0.5),
            ),
            links=(
                GraphEdge("R", "A"), GraphEdge("A", "B"), GraphEdge("B", "C"), GraphEdge("R", "B"),
            ),
        ))

        path = find_trust_path(store.state.data, "C")

        assert path.nodes == ["R", "B", "C"]
        assert path.distance == 2
        assert path.score == 0.5

    def test_root_and_unreachable(self, store):
        store.dispatch(MergeData(nodes=(GraphNode(id="Z", label="Z", distance=1),)))

        assert find_trust_path(store.state.data, "R").nodes == ["R"]
        assert find_trust_path(store.state.data, "Z") is None
        assert find_trust_path(store.state.data, "missing") is None
