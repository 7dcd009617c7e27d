# Graph module - trust graph state, scoring and projection
from .models import (
    EdgeType,
    GraphNode,
    GraphEdge,
    GraphData,
    GraphFilters,
    GraphStats,
    NodeProfile,
    Note,
    TrustFact,
    TrustPath,
    DEFAULT_FILTERS,
)
from .scoring import ScoringConfig, DEFAULT_SCORING_CONFIG, base_score, path_bonus, trust_score
from .commands import GraphState, apply, merge_graph
from .store import GraphStateStore
from .visibility import filter_graph, calculate_stats, node_visible, update_filters

# traversal and export are imported from their modules directly;
# traversal depends on ingestion, which depends on this package.

__all__ = [
    # Models
    "EdgeType",
    "GraphNode",
    "GraphEdge",
    "GraphData",
    "GraphFilters",
    "GraphStats",
    "NodeProfile",
    "Note",
    "TrustFact",
    "TrustPath",
    "DEFAULT_FILTERS",
    # Scoring
    "ScoringConfig",
    "DEFAULT_SCORING_CONFIG",
    "base_score",
    "path_bonus",
    "trust_score",
    # State
    "GraphState",
    "apply",
    "merge_graph",
    "GraphStateStore",
    # Visibility (CANONICAL)
    "filter_graph",
    "calculate_stats",
    "node_visible",
    "update_filters",
]
