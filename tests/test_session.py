# tests/test_session.py
"""
Test the exploration session facade end to end with fake providers.
"""

import json

import pytest

from trustgraph.errors import ProviderNetworkError, UnavailableCapabilityError
from trustgraph.graph.models import DEFAULT_FILTERS, NodeProfile
from trustgraph.session import FILTERS_STORAGE_KEY, GraphSession

from conftest import FakeProvider, FakeRelay, FakeRelayNetwork, make_event

NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"


def make_session(provider, cache, network=None):
    network = network or FakeRelayNetwork({})
    return GraphSession(provider=provider, cache=cache, fetcher=network.fetcher())


class TestInitialize:
    """Tests for choosing and resetting the root."""

    @pytest.mark.asyncio
    async def test_defaults_to_provider_identity(self, provider, cache):
        session = make_session(provider, cache)

        root = await session.initialize()

        assert root.id == "R"
        assert root.is_root
        assert root.trust_score == 1.0
        assert session.root_id == "R"
        assert session.snapshot.node_count == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_npub_root_normalized(self, provider, cache):
        session = make_session(provider, cache)
        root = await session.initialize(NPUB)
        assert root.id == HEX
        assert root.label.startswith("npub1")
        await session.close()

    @pytest.mark.asyncio
    async def test_cached_profile_labels_root(self, provider, cache):
        cache.profiles.put("R", NodeProfile(pubkey="R", name="me"))
        session = make_session(provider, cache)
        assert (await session.initialize()).label == "me"
        await session.close()

    @pytest.mark.asyncio
    async def test_no_provider_without_root(self, cache):
        session = make_session(None, cache)
        with pytest.raises(UnavailableCapabilityError):
            await session.initialize()

    @pytest.mark.asyncio
    async def test_provider_not_ready_sets_error(self, cache):
        session = make_session(FakeProvider(available=False), cache)

        with pytest.raises(UnavailableCapabilityError):
            await session.initialize()
        assert session.error

    @pytest.mark.asyncio
    async def test_reinitialize_resets_graph(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        await session.expand_node("R")
        session.select_node("A")

        await session.initialize("X")

        assert [n.id for n in session.snapshot.nodes] == ["X"]
        assert session.selected_node is None
        assert not session.is_expanded("R")
        await session.close()


class TestExpandAndQuery:
    """Tests for expansion and the read surface."""

    @pytest.mark.asyncio
    async def test_expand_and_stats(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()

        assert await session.expand_node("R") is True
        assert await session.expand_node("A") is True

        stats = session.stats
        assert stats.total_nodes == 4
        assert stats.total_edges == 4
        assert stats.max_distance == 2
        assert session.is_expanded("A")
        assert not session.is_loading
        assert session.trust_path("C").nodes == ["R", "A", "C"]
        assert {n.id for n in session.neighbors("B")} == {"R", "A"}
        await session.close()

    @pytest.mark.asyncio
    async def test_unavailable_provider_surfaces_error(self, cache):
        session = make_session(FakeProvider(available=False), cache)
        await session.initialize("R")

        with pytest.raises(UnavailableCapabilityError):
            await session.expand_node("R")
        assert session.error

        session.clear_error()
        assert session.error is None
        await session.close()

    @pytest.mark.asyncio
    async def test_successful_expand_clears_error(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        provider.available = False
        with pytest.raises(UnavailableCapabilityError):
            await session.expand_node("R")

        provider.available = True
        assert await session.expand_node("R") is True
        assert session.error is None
        await session.close()

    @pytest.mark.asyncio
    async def test_network_error_not_surfaced(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        provider.fail_follows = ProviderNetworkError("read timed out")

        assert await session.expand_node("R") is False
        assert session.error is None
        assert not session.is_expanded("R")
        await session.close()

    @pytest.mark.asyncio
    async def test_list_nodes(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        await session.expand_node("R")
        await session.expand_node("A")

        assert [n.id for n in session.list_nodes("distance")][0] == "R"
        assert [n.id for n in session.list_nodes("recent")] == ["C", "B", "A", "R"]
        assert [n.id for n in session.list_nodes(query="c")] == ["C"]

        session.set_filters(max_distance=1)
        assert {n.id for n in session.list_nodes()} == {"R", "A", "B"}
        await session.close()

    @pytest.mark.asyncio
    async def test_select_node(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()

        assert session.select_node("R").id == "R"
        assert session.select_node("nobody") is None
        assert session.selected_node.id == "R"
        assert session.select_node(None) is None
        assert session.selected_node is None
        await session.close()

    @pytest.mark.asyncio
    async def test_root_profile_loaded(self, provider, cache):
        network = FakeRelayNetwork({
            "wss://one": FakeRelay([make_event("p", "R", kind=0, content='{"display_name": "Root"}')]),
        })
        session = make_session(provider, cache, network)

        await session.initialize()
        await session.controller.wait_for_background()

        assert session.profiles["R"].best_name == "Root"
        await session.close()


class TestFilters:
    """Tests for filter updates, projection and persistence."""

    @pytest.mark.asyncio
    async def test_filters_project_without_mutating(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        await session.expand_node("R")
        await session.expand_node("A")

        session.set_filters(max_distance=1)

        assert {n.id for n in session.filtered.nodes} == {"R", "A", "B"}
        assert session.snapshot.node_count == 4
        assert session.stats.total_nodes == 3
        await session.close()

    def test_filters_persisted(self, provider, cache, storage):
        session = make_session(provider, cache)
        session.set_filters(min_trust_score=0.4, show_mutes=True)

        assert json.loads(storage.get(FILTERS_STORAGE_KEY))["min_trust_score"] == 0.4
        restored = make_session(provider, cache)
        assert restored.filters.min_trust_score == 0.4
        assert restored.filters.show_mutes

        restored.reset_filters()
        assert make_session(provider, cache).filters == DEFAULT_FILTERS

    def test_corrupt_persisted_filters_ignored(self, provider, cache, storage):
        storage.set(FILTERS_STORAGE_KEY, "{oops")
        assert make_session(provider, cache).filters == DEFAULT_FILTERS

    def test_unknown_filter_rejected(self, provider, cache):
        session = make_session(provider, cache)
        with pytest.raises(ValueError):
            session.set_filters(colour="red")

    @pytest.mark.asyncio
    async def test_export(self, provider, cache):
        session = make_session(provider, cache)
        await session.initialize()
        await session.expand_node("R")

        document = json.loads(session.export_json())
        assert {n["id"] for n in document["nodes"]} == {"R", "A", "B"}
        assert session.export_csv().splitlines()[0] == "pubkey,name,distance,trust_score,is_mutual"
        await session.close()


class TestFeed:

    @pytest.mark.asyncio
    async def test_feed_via_session(self, provider, cache):
        network = FakeRelayNetwork({
            "wss://one": FakeRelay([make_event("n1", HEX, created_at=5, content="hello")]),
        })
        session = make_session(provider, cache, network)

        notes = await session.load_feed(NPUB)

        assert [n.content for n in notes] == ["hello"]
        assert session.feed.pubkey == HEX
        assert await session.load_more_feed() == []
        await session.close()
