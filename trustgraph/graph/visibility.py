# trustgraph/graph/visibility.py
"""
Filter/projection predicates for the trust graph.

SINGLE SOURCE OF TRUTH for what a filter shows. Use these predicates
everywhere; never mutate the stored graph to hide something.

A node is visible if:
1. trust_score >= min_trust_score
2. distance <= max_distance
3. search_query is empty or a case-insensitive substring of label or id
4. show_mutuals_only is off, or the node is mutual (the root is exempt)

An edge is visible if its type is enabled and both endpoints are visible.
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List

from .models import (
    DEFAULT_FILTERS,
    MAX_DISTANCE_BOUNDS,
    MIN_TRUST_BOUNDS,
    EdgeType,
    GraphData,
    GraphEdge,
    GraphFilters,
    GraphNode,
    GraphStats,
)

SORT_KEYS = ("trust", "distance", "name", "recent")


def _matches_query(node: GraphNode, query: str) -> bool:
    lowered = query.lower()
    return lowered in (node.label or "").lower() or lowered in node.id.lower()


def node_visible(node: GraphNode, filters: GraphFilters) -> bool:
    """Node predicate. See module docstring."""
    if node.trust_score < filters.min_trust_score:
        return False
    if node.distance > filters.max_distance:
        return False
    if filters.search_query and not _matches_query(node, filters.search_query):
        return False
    if filters.show_mutuals_only and not node.is_mutual and not node.is_root:
        return False
    return True


def edge_type_enabled(edge: GraphEdge, filters: GraphFilters) -> bool:
    if edge.type == EdgeType.FOLLOW:
        return filters.show_follows
    if edge.type == EdgeType.MUTE:
        return filters.show_mutes
    return False


def filter_graph(data: GraphData, filters: GraphFilters = DEFAULT_FILTERS) -> GraphData:
    """
    Project the graph through filters.

    Args:
        data: Full graph
        filters: Projection parameters

    Returns:
        New GraphData; the input is untouched
    """
    nodes = tuple(n for n in data.nodes if node_visible(n, filters))
    visible_ids = {n.id for n in nodes}
    links = tuple(
        e for e in data.links
        if edge_type_enabled(e, filters)
        and e.source in visible_ids
        and e.target in visible_ids
    )
    return GraphData(nodes=nodes, links=links)


def calculate_stats(data: GraphData, cache_hit_rate: float = 0.0) -> GraphStats:
    """
    Aggregate statistics over a graph or projection.

    avg_trust_score excludes the root.
    """
    if not data.nodes:
        return GraphStats(cache_hit_rate=cache_hit_rate)

    non_root = [n for n in data.nodes if not n.is_root]
    avg = sum(n.trust_score for n in non_root) / len(non_root) if non_root else 0.0

    return GraphStats(
        total_nodes=data.node_count,
        total_edges=data.edge_count,
        avg_trust_score=avg,
        max_distance=max(n.distance for n in data.nodes),
        mutual_count=sum(1 for n in data.nodes if n.is_mutual),
        cache_hit_rate=cache_hit_rate,
    )


def clamp_filters(filters: GraphFilters) -> GraphFilters:
    """Clamp numeric filters into their bounds."""
    low_trust, high_trust = MIN_TRUST_BOUNDS
    low_distance, high_distance = MAX_DISTANCE_BOUNDS
    return replace(
        filters,
        min_trust_score=min(max(float(filters.min_trust_score), low_trust), high_trust),
        max_distance=min(max(int(filters.max_distance), low_distance), high_distance),
    )


def update_filters(filters: GraphFilters, updates: Dict[str, Any]) -> GraphFilters:
    """
    Partial filter update with clamping.

    Raises:
        ValueError: Unknown filter name
    """
    unknown = set(updates) - set(filters.to_dict())
    if unknown:
        raise ValueError(f"Unknown filters: {sorted(unknown)}")
    return clamp_filters(replace(filters, **updates))


def get_node_neighbors(data: GraphData, node_id: str) -> List[GraphNode]:
    """Nodes linked to node_id in either direction."""
    neighbor_ids = set()
    for edge in data.links:
        if edge.source == node_id:
            neighbor_ids.add(edge.target)
        if edge.target == node_id:
            neighbor_ids.add(edge.source)
    return [n for n in data.nodes if n.id in neighbor_ids]


def search_nodes(nodes: Iterable[GraphNode], query: str) -> List[GraphNode]:
    """Case-insensitive substring search on label and id."""
    if not query:
        return list(nodes)
    return [n for n in nodes if _matches_query(n, query)]


def sort_nodes(nodes: Iterable[GraphNode], sort_by: str = "trust") -> List[GraphNode]:
    """
    Sort nodes.

    Args:
        nodes: Nodes to sort
        sort_by: "trust" (highest first), "distance" (closest first),
            "name" (label, then id) or "recent" (latest discovered first)

    Raises:
        ValueError: Unknown sort key
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_by}")
    result = list(nodes)
    if sort_by == "trust":
        result.sort(key=lambda n: n.trust_score, reverse=True)
    elif sort_by == "distance":
        result.sort(key=lambda n: n.distance)
    elif sort_by == "name":
        result.sort(key=lambda n: (n.label or n.id).lower())
    else:
        # Nodes are kept in discovery order
        result.reverse()
    return result
