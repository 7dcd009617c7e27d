# trustgraph/session.py
"""
Exploration session facade.

One GraphSession owns one graph store, one expansion controller and one
feed pager. Everything the UI layer needs goes through here: snapshots,
the filtered projection, stats, loading/error flags and the imperative
actions (initialize, expand_node, set_filters, select_node, ...).

Multiple sessions are independent; nothing here is a module-level singleton.
"""

import json
from typing import Any, Dict, List, Optional

from .cache.profile_cache import LocalCache
from .errors import ProviderUnavailableError, UnavailableCapabilityError
from .graph.commands import (
    ResetFilters,
    SelectNode,
    SetError,
    SetFilters,
    SetRoot,
)
from .graph.export import export_csv, export_json
from .graph.identity import format_pubkey, npub_to_hex
from .graph.models import (
    DEFAULT_FILTERS,
    GraphData,
    GraphFilters,
    GraphNode,
    GraphStats,
    NodeProfile,
    Note,
    TrustPath,
)
from .graph.scoring import DEFAULT_SCORING_CONFIG, ScoringConfig, trust_score
from .graph.store import GraphStateStore
from .graph.traversal import PROVIDER_CAPABILITY, ExpansionController, find_trust_path
from .graph.visibility import (
    calculate_stats,
    clamp_filters,
    filter_graph,
    get_node_neighbors,
    search_nodes,
    sort_nodes,
    update_filters,
)
from .ingestion.feed import FeedPager
from .ingestion.follows import RelayFollowListSource
from .ingestion.profiles import ProfileFetcher
from .ingestion.provider import TrustProvider
from .ingestion.relays import MultiSourceFetcher
from .logging import get_logger

logger = get_logger(__name__)

FILTERS_STORAGE_KEY = "graph_filters"


class GraphSession:
    """
    One user's exploration of the trust graph.

    Example:
        session = GraphSession(provider=OracleTrustProvider(my_pubkey=me))
        await session.initialize()
        await session.expand_node(session.root_id)
        view = session.filtered
    """

    def __init__(
        self,
        provider: Optional[TrustProvider] = None,
        cache: Optional[LocalCache] = None,
        fetcher: Optional[MultiSourceFetcher] = None,
        use_relay_follows: bool = True,
        max_distance: Optional[int] = None,
        scoring: ScoringConfig = DEFAULT_SCORING_CONFIG,
    ):
        """
        Args:
            provider: Follow-list/distance provider (None: expansion unavailable)
            cache: Local cache (defaults to an in-memory one)
            fetcher: Relay fetcher shared by profiles, follow lists and feeds
            use_relay_follows: Fall back to relay contact lists on empty provider answers
            max_distance: Expansion distance limit
            scoring: Trust formula parameters
        """
        self.provider = provider
        self.cache = cache if cache is not None else LocalCache()
        self.fetcher = fetcher or MultiSourceFetcher()
        self.scoring = scoring
        self.store = GraphStateStore()
        self.profile_fetcher = ProfileFetcher(self.fetcher, cache=self.cache)
        self.controller = ExpansionController(
            self.store,
            provider,
            cache=self.cache,
            follow_source=RelayFollowListSource(self.fetcher) if use_relay_follows else None,
            profile_fetcher=self.profile_fetcher,
            max_distance=max_distance,
            scoring=scoring,
        )
        self.feed = FeedPager(self.fetcher)
        self.store.dispatch(SetFilters(self._load_filters()))

    # ============================================================
    # FILTER PERSISTENCE
    # ============================================================

    def _load_filters(self) -> GraphFilters:
        try:
            raw = self.cache.storage.get(FILTERS_STORAGE_KEY)
            if not raw:
                return DEFAULT_FILTERS
            return update_filters(DEFAULT_FILTERS, json.loads(raw))
        except Exception as e:
            logger.debug("filters_load_failed", error=str(e))
            return DEFAULT_FILTERS

    def _save_filters(self, filters: GraphFilters) -> None:
        try:
            self.cache.storage.set(FILTERS_STORAGE_KEY, json.dumps(filters.to_dict()))
        except Exception as e:
            logger.warning("filters_save_failed", error=str(e))

    # ============================================================
    # READ SURFACE
    # ============================================================

    @property
    def root_id(self) -> Optional[str]:
        return self.store.state.root_id

    @property
    def snapshot(self) -> GraphData:
        """Full graph."""
        return self.store.state.data

    @property
    def filters(self) -> GraphFilters:
        return self.store.state.filters

    @property
    def filtered(self) -> GraphData:
        """Graph projected through the current filters."""
        state = self.store.state
        return filter_graph(state.data, state.filters)

    @property
    def stats(self) -> GraphStats:
        """Stats over the filtered graph."""
        return calculate_stats(self.filtered, cache_hit_rate=self.cache.hit_rate)

    @property
    def is_loading(self) -> bool:
        return self.store.state.is_loading

    @property
    def error(self) -> Optional[str]:
        return self.store.state.error

    @property
    def profiles(self) -> Dict[str, NodeProfile]:
        return dict(self.store.state.profiles)

    @property
    def selected_node(self) -> Optional[GraphNode]:
        return self.store.state.selected_node

    def is_expanded(self, node_id: str) -> bool:
        return self.store.is_expanded(node_id)

    def trust_path(self, node_id: str) -> Optional[TrustPath]:
        return find_trust_path(self.snapshot, node_id)

    def neighbors(self, node_id: str) -> List[GraphNode]:
        return get_node_neighbors(self.snapshot, node_id)

    def list_nodes(self, sort_by: str = "trust", query: str = "") -> List[GraphNode]:
        """
        Filtered nodes for list views, optionally searched and sorted.

        Raises:
            ValueError: Unknown sort key
        """
        return sort_nodes(search_nodes(self.filtered.nodes, query), sort_by)

    def export_json(self) -> str:
        return export_json(self.filtered, self.stats)

    def export_csv(self) -> str:
        return export_csv(self.filtered)

    # ============================================================
    # ACTIONS
    # ============================================================

    async def initialize(self, root_id: Optional[str] = None) -> GraphNode:
        """
        Start (or restart) the session around a root identity.

        Args:
            root_id: Hex key or npub; defaults to the provider's own identity

        Raises:
            UnavailableCapabilityError: No root given and no usable provider
        """
        if root_id is None:
            if self.provider is None:
                raise UnavailableCapabilityError(PROVIDER_CAPABILITY, "No trust provider configured")
            try:
                root_id = await self.provider.get_my_pubkey()
            except ProviderUnavailableError as e:
                self.store.dispatch(SetError(str(e)))
                raise UnavailableCapabilityError(PROVIDER_CAPABILITY, str(e))

        root_id = npub_to_hex(root_id.strip())
        profile = self.cache.profiles.get(root_id)
        root = GraphNode(
            id=root_id,
            label=(profile.best_name if profile else None) or format_pubkey(root_id),
            picture=profile.picture if profile else None,
            distance=0,
            trust_score=trust_score(0, 1, self.scoring),
            is_root=True,
        )
        self.store.dispatch(SetRoot(root))
        self.feed.reset()
        self.controller.load_profiles_in_background([root_id])
        return root

    async def expand_node(self, node_id: str) -> bool:
        """
        Expand a node's follow list into the graph.

        Raises:
            UnavailableCapabilityError: Provider missing or not ready (also
                recorded as the session error)
        """
        try:
            expanded = await self.controller.expand(node_id)
        except UnavailableCapabilityError as e:
            self.store.dispatch(SetError(str(e)))
            raise
        if expanded and self.error:
            self.store.dispatch(SetError(None))
        return expanded

    def set_filters(self, **updates: Any) -> GraphFilters:
        """
        Update some filters. Numeric values are clamped into bounds.

        Raises:
            ValueError: Unknown filter name
        """
        filters = update_filters(self.filters, updates)
        self.store.dispatch(SetFilters(filters))
        self._save_filters(filters)
        return filters

    def replace_filters(self, filters: GraphFilters) -> GraphFilters:
        filters = clamp_filters(filters)
        self.store.dispatch(SetFilters(filters))
        self._save_filters(filters)
        return filters

    def reset_filters(self) -> GraphFilters:
        self.store.dispatch(ResetFilters())
        self._save_filters(DEFAULT_FILTERS)
        return DEFAULT_FILTERS

    def select_node(self, node_id: Optional[str]) -> Optional[GraphNode]:
        """Select a known node (None clears the selection)."""
        if node_id is not None and self.store.get_node(node_id) is None:
            return None
        self.store.dispatch(SelectNode(node_id))
        return self.selected_node

    def clear_error(self) -> None:
        self.store.dispatch(SetError(None))

    # ============================================================
    # FEED
    # ============================================================

    async def load_feed(self, pubkey: str) -> List[Note]:
        return await self.feed.fetch(npub_to_hex(pubkey))

    async def load_more_feed(self) -> List[Note]:
        return await self.feed.load_more()

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def close(self) -> None:
        """Cancel background work and release the fetcher and provider."""
        await self.controller.close()
        await self.fetcher.close()
        if self.provider is not None:
            await self.provider.close()
