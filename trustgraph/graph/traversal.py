# trustgraph/graph/traversal.py
"""
Incremental graph expansion and path queries.

Per-node expansion state machine:

UNEXPANDED -> EXPANDING
EXPANDING  -> EXPANDED   (follow list fetched and merged)
EXPANDING  -> UNEXPANDED (failure; the node may be retried)

EXPANDING lives in the controller's in-flight set; EXPANDED lives in the
store. Both are read at call time, and the in-flight set is updated before
the first await, so concurrent expand() calls for one node fetch once.
"""

import asyncio
from collections import deque
from enum import Enum
from typing import Awaitable, Dict, List, Optional, Sequence, Set, Tuple

from ..cache.profile_cache import LocalCache
from ..errors import (
    ProviderDataError,
    ProviderUnavailableError,
    UnavailableCapabilityError,
)
from ..ingestion.follows import RelayFollowListSource
from ..ingestion.profiles import ProfileFetcher
from ..ingestion.provider import TrustProvider
from ..logging import get_logger
from ..settings import settings
from .commands import AddProfiles, BeginLoading, EndLoading, MarkExpanded, MergeData
from .identity import format_pubkey
from .models import EdgeType, GraphData, GraphEdge, GraphNode, TrustFact, TrustPath
from .scoring import DEFAULT_SCORING_CONFIG, ScoringConfig, trust_score
from .store import GraphStateStore

logger = get_logger(__name__)

PROVIDER_CAPABILITY = "trust_provider"


class ExpansionState(str, Enum):
    UNEXPANDED = "UNEXPANDED"
    EXPANDING = "EXPANDING"
    EXPANDED = "EXPANDED"


# Valid state transitions
TRANSITIONS: Dict[ExpansionState, Set[ExpansionState]] = {
    ExpansionState.UNEXPANDED: {ExpansionState.EXPANDING},
    ExpansionState.EXPANDING: {ExpansionState.EXPANDED, ExpansionState.UNEXPANDED},
    ExpansionState.EXPANDED: set(),  # Terminal for the current root
}


class InvalidTransitionError(RuntimeError):
    pass


class ExpansionController:
    """
    Expands nodes by fetching their follow lists and merging the results.

    Example:
        controller = ExpansionController(store, provider, cache=cache)
        await controller.expand(root_id)
    """

    def __init__(
        self,
        store: GraphStateStore,
        provider: Optional[TrustProvider],
        cache: Optional[LocalCache] = None,
        follow_source: Optional[RelayFollowListSource] = None,
        profile_fetcher: Optional[ProfileFetcher] = None,
        max_distance: Optional[int] = None,
        scoring: ScoringConfig = DEFAULT_SCORING_CONFIG,
    ):
        """
        Args:
            store: Session store (all writes go through dispatch)
            provider: Follow-list/distance provider; None means not installed
            cache: Trust/profile cache
            follow_source: Relay contact lists, used when the provider returns nothing
            profile_fetcher: Background profile lookups for new nodes
            max_distance: Nodes at this distance or further are never expanded
            scoring: Trust formula parameters
        """
        self.store = store
        self.provider = provider
        self.cache = cache
        self.follow_source = follow_source
        self.profile_fetcher = profile_fetcher
        self.max_distance = max_distance if max_distance is not None else settings.max_expand_distance
        self.scoring = scoring
        self._in_flight: Set[Tuple[int, str]] = set()
        self._background: Set[asyncio.Task] = set()

    # ============================================================
    # STATE
    # ============================================================

    def state_of(self, node_id: str, generation: Optional[int] = None) -> ExpansionState:
        """State of node_id for a root generation (default: the current one)."""
        if generation is None:
            generation = self.store.generation
        if self.store.is_current(generation) and self.store.is_expanded(node_id):
            return ExpansionState.EXPANDED
        if (generation, node_id) in self._in_flight:
            return ExpansionState.EXPANDING
        return ExpansionState.UNEXPANDED

    def _transition(self, node_id: str, to_state: ExpansionState, generation: int) -> None:
        current = self.state_of(node_id, generation)
        if to_state not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Invalid transition for {node_id[:8]}: {current.value} -> {to_state.value}"
            )
        if to_state == ExpansionState.EXPANDING:
            self._in_flight.add((generation, node_id))
            return
        self._in_flight.discard((generation, node_id))
        if to_state == ExpansionState.EXPANDED:
            self.store.dispatch(MarkExpanded(node_id, generation=generation))

    @property
    def in_flight(self) -> Set[str]:
        generation = self.store.generation
        return {node_id for gen, node_id in self._in_flight if gen == generation}

    # ============================================================
    # EXPANSION
    # ============================================================

    async def expand(self, node_id: str) -> bool:
        """
        Expand one node.

        No-op when the node is unknown, already expanding or expanded, or at
        max_distance or beyond.

        Returns:
            True if the node's follows were merged

        Raises:
            UnavailableCapabilityError: No provider, or provider not ready
        """
        if self.state_of(node_id) != ExpansionState.UNEXPANDED:
            return False
        node = self.store.get_node(node_id)
        if node is None or node.distance >= self.max_distance:
            return False

        generation = self.store.generation
        self._transition(node_id, ExpansionState.EXPANDING, generation)
        self.store.dispatch(BeginLoading())
        expanded = False
        try:
            follows = await self._fetch_follows(node_id)
            if not self.store.is_current(generation):
                logger.debug("expansion_discarded", node_id=node_id[:8], reason="root_changed")
                return False

            new_nodes, links = await self._discover(node, follows)
            if not self.store.is_current(generation):
                logger.debug("expansion_discarded", node_id=node_id[:8], reason="root_changed")
                return False

            self.store.dispatch(MergeData(nodes=tuple(new_nodes), links=tuple(links), generation=generation))
            self._transition(node_id, ExpansionState.EXPANDED, generation)
            expanded = True

            logger.info(
                "node_expanded",
                node_id=node_id[:8],
                follows=len(follows),
                new_nodes=len(new_nodes),
            )

            if new_nodes and self.profile_fetcher is not None:
                self._spawn(self._load_profiles([n.id for n in new_nodes], generation))
            return True
        except ProviderDataError as e:
            logger.warning("expansion_failed", node_id=node_id[:8], error=str(e))
            return False
        finally:
            if not expanded:
                self._transition(node_id, ExpansionState.UNEXPANDED, generation)
            self.store.dispatch(EndLoading(generation=generation))

    async def _fetch_follows(self, node_id: str) -> List[str]:
        provider = self.provider
        if provider is None:
            raise UnavailableCapabilityError(PROVIDER_CAPABILITY, "No trust provider configured")
        if not await provider.is_available():
            raise UnavailableCapabilityError(PROVIDER_CAPABILITY, "Trust provider is not ready")

        try:
            follows = await provider.get_follows(node_id)
        except ProviderUnavailableError as e:
            raise UnavailableCapabilityError(PROVIDER_CAPABILITY, str(e))

        if not follows and self.follow_source is not None:
            follows = await self.follow_source.get_follows(node_id)
            logger.debug("follows_from_relays", node_id=node_id[:8], follows=len(follows))

        # Order-preserving dedup, no self-follow
        return [key for key in dict.fromkeys(follows) if key != node_id]

    async def _discover(self, parent: GraphNode, follows: Sequence[str]):
        """Build new nodes and one link per follow."""
        known = self.store.state.nodes
        new_ids = [key for key in follows if key not in known]
        facts = await self._resolve(new_ids) if new_ids else {}

        cached_profiles = self.cache.profiles.get_many(new_ids) if (self.cache and new_ids) else {}

        new_nodes: List[GraphNode] = []
        for key in new_ids:
            fact = facts.get(key)
            distance = fact.distance if fact and fact.distance is not None else parent.distance + 1
            path_count = fact.paths if fact and fact.paths else 1
            profile = cached_profiles.get(key)
            new_nodes.append(GraphNode(
                id=key,
                label=(profile.best_name if profile else None) or format_pubkey(key),
                picture=profile.picture if profile else None,
                distance=distance,
                path_count=path_count,
                trust_score=trust_score(distance, path_count, self.scoring),
            ))

        links = [GraphEdge(source=parent.id, target=key, type=EdgeType.FOLLOW) for key in follows]
        return new_nodes, links

    async def _resolve(self, pubkeys: List[str]) -> Dict[str, TrustFact]:
        """
        Distance/paths for new identities: cache first, provider for misses.

        A null distance means the resolver cannot reach the identity; it is
        cached like any other answer. Resolver failures degrade to an empty
        answer.
        """
        facts: Dict[str, TrustFact] = {}
        if self.cache is not None:
            facts.update(self.cache.trust.get_many(pubkeys))

        misses = [key for key in pubkeys if key not in facts]
        if misses and self.provider is not None:
            fresh = await self._query_distances(misses)
            if fresh and self.cache is not None:
                self.cache.trust.put_many(fresh)
            facts.update(fresh)

        # Unreachable identities have no paths to count
        unresolved = [
            key for key, fact in facts.items()
            if fact.distance is not None and not fact.paths_resolved
        ]
        if unresolved:
            self._spawn(self._refresh_paths(unresolved))
        return facts

    async def _query_distances(self, pubkeys: List[str]) -> Dict[str, TrustFact]:
        try:
            resolved = await self.provider.get_distance_batch(pubkeys)
        except (ProviderUnavailableError, ProviderDataError) as e:
            logger.warning("distance_resolution_failed", count=len(pubkeys), error=str(e))
            return {}
        return {
            key: TrustFact(distance=info.distance, paths=info.paths)
            for key, info in resolved.items()
        }

    # ============================================================
    # BACKGROUND WORK
    # ============================================================

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_paths(self, pubkeys: List[str]) -> None:
        """Re-resolve identities whose path count was unknown. Cache only."""
        fresh = await self._query_distances(pubkeys)
        resolved = {key: fact for key, fact in fresh.items() if fact.paths_resolved}
        if resolved and self.cache is not None:
            self.cache.trust.put_many(resolved)
        logger.debug("paths_refreshed", requested=len(pubkeys), resolved=len(resolved))

    async def _load_profiles(self, pubkeys: List[str], generation: int) -> None:
        try:
            profiles = await self.profile_fetcher.get_profiles(pubkeys)
        except Exception as e:
            logger.warning("profile_fetch_failed", count=len(pubkeys), error=str(e))
            return
        if profiles and self.store.is_current(generation):
            self.store.dispatch(AddProfiles(profiles=tuple(profiles.values()), generation=generation))

    def load_profiles_in_background(self, pubkeys: List[str]) -> None:
        """Fetch profiles without blocking; results land in the store."""
        if self.profile_fetcher is not None and pubkeys:
            self._spawn(self._load_profiles(list(pubkeys), self.store.generation))

    async def wait_for_background(self) -> None:
        """Wait for outstanding background tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background tasks."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()


# ============================================================
# PATH QUERIES
# ============================================================

def find_trust_path(data: GraphData, target_id: str) -> Optional[TrustPath]:
    """
    Shortest discovered follow path from the root to target.

    Breadth-first over directed links.

    Returns:
        TrustPath, or None if the target is unknown or unreachable
    """
    root = next((n for n in data.nodes if n.is_root), None)
    target = data.get_node(target_id)
    if root is None or target is None:
        return None
    if root.id == target_id:
        return TrustPath(nodes=[root.id], distance=0, score=root.trust_score)

    adjacency: Dict[str, List[str]] = {}
    for edge in data.links:
        adjacency.setdefault(edge.source, []).append(edge.target)

    previous: Dict[str, Optional[str]] = {root.id: None}
    queue = deque([root.id])
    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, []):
            if neighbor in previous:
                continue
            previous[neighbor] = current
            if neighbor == target_id:
                path = [neighbor]
                while previous[path[-1]] is not None:
                    path.append(previous[path[-1]])
                path.reverse()
                return TrustPath(nodes=path, distance=len(path) - 1, score=target.trust_score)
            queue.append(neighbor)
    return None
