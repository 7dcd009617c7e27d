# trustgraph/graph/commands.py
"""
Graph state and the commands that change it.

Every mutation is one of the command dataclasses below, applied by the
pure function apply(state, command) -> state. apply never awaits and
never touches the network; async work stays in the callers.

Commands carrying a generation are results of async work started for an
earlier root. They are discarded when the generation no longer matches.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Optional, Tuple, Union

from .models import (
    DEFAULT_FILTERS,
    GraphData,
    GraphEdge,
    GraphFilters,
    GraphNode,
    NodeProfile,
)
from .scoring import DEFAULT_SCORING_CONFIG, ScoringConfig, trust_score


@dataclass(frozen=True)
class GraphState:
    """Immutable snapshot of one exploration session."""
    generation: int = 0
    root_id: Optional[str] = None
    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    links: Dict[Tuple[str, str], GraphEdge] = field(default_factory=dict)
    expanded: FrozenSet[str] = frozenset()
    filters: GraphFilters = DEFAULT_FILTERS
    selected_id: Optional[str] = None
    profiles: Dict[str, NodeProfile] = field(default_factory=dict)
    loading: int = 0
    error: Optional[str] = None

    @property
    def data(self) -> GraphData:
        return GraphData(nodes=tuple(self.nodes.values()), links=tuple(self.links.values()))

    @property
    def is_loading(self) -> bool:
        return self.loading > 0

    @property
    def selected_node(self) -> Optional[GraphNode]:
        return self.nodes.get(self.selected_id) if self.selected_id else None


# ============================================================
# COMMANDS
# ============================================================

@dataclass(frozen=True)
class SetRoot:
    """Reset the session around a new root. Bumps the generation."""
    root: GraphNode


@dataclass(frozen=True)
class MergeData:
    """Merge discovered nodes and links."""
    nodes: Tuple[GraphNode, ...] = ()
    links: Tuple[GraphEdge, ...] = ()
    generation: Optional[int] = None


@dataclass(frozen=True)
class MarkExpanded:
    node_id: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class AddProfiles:
    profiles: Tuple[NodeProfile, ...] = ()
    generation: Optional[int] = None


@dataclass(frozen=True)
class SetFilters:
    filters: GraphFilters


@dataclass(frozen=True)
class ResetFilters:
    pass


@dataclass(frozen=True)
class SelectNode:
    node_id: Optional[str]


@dataclass(frozen=True)
class BeginLoading:
    pass


@dataclass(frozen=True)
class EndLoading:
    generation: Optional[int] = None


@dataclass(frozen=True)
class SetError:
    message: Optional[str]


Command = Union[
    SetRoot,
    MergeData,
    MarkExpanded,
    AddProfiles,
    SetFilters,
    ResetFilters,
    SelectNode,
    BeginLoading,
    EndLoading,
    SetError,
]


# ============================================================
# MERGE
# ============================================================

def merge_graph(
    nodes: Dict[str, GraphNode],
    links: Dict[Tuple[str, str], GraphEdge],
    new_nodes: Tuple[GraphNode, ...],
    new_links: Tuple[GraphEdge, ...],
    root_id: Optional[str] = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> Tuple[Dict[str, GraphNode], Dict[Tuple[str, str], GraphEdge]]:
    """
    Merge new nodes and links into copies of the current collections.

    Rules:
    - A link is identified by (source, target); duplicates against the
      current links or earlier in the batch are dropped.
    - Each accepted link into a node that existed before this merge adds one
      corroborating path: path_count += 1 and the trust score is recomputed.
    - Nodes not yet present are added as submitted.
    - An accepted link whose reverse exists makes both edges bidirectional;
      if one end is the root the other end becomes mutual.
    - An accepted link carries its target's trust score after this merge
      as its strength.

    Returns:
        (nodes, links) - new dicts; inputs are not modified
    """
    merged_nodes = dict(nodes)
    merged_links = dict(links)
    preexisting = set(nodes)
    accepted = []

    for link in new_links:
        if link.key in merged_links:
            continue
        accepted.append(link.key)

        reverse_key = (link.target, link.source)
        reverse = merged_links.get(reverse_key)
        if reverse is not None:
            link = replace(link, bidirectional=True)
            if not reverse.bidirectional:
                merged_links[reverse_key] = replace(reverse, bidirectional=True)
        merged_links[link.key] = link

        if link.target in preexisting:
            target = merged_nodes[link.target]
            path_count = target.path_count + 1
            merged_nodes[link.target] = replace(
                target,
                path_count=path_count,
                trust_score=trust_score(target.distance, path_count, config),
            )

    for node in new_nodes:
        if node.id not in merged_nodes:
            merged_nodes[node.id] = node

    for key in accepted:
        target = merged_nodes.get(key[1])
        if target is not None:
            merged_links[key] = replace(merged_links[key], strength=target.trust_score)

    if root_id is not None:
        for link in new_links:
            if root_id not in link.key or not merged_links[link.key].bidirectional:
                continue
            other = link.target if link.source == root_id else link.source
            node = merged_nodes.get(other)
            if node is not None and not node.is_mutual:
                merged_nodes[other] = replace(node, is_mutual=True)

    return merged_nodes, merged_links


# ============================================================
# APPLY
# ============================================================

def _is_stale(state: GraphState, generation: Optional[int]) -> bool:
    return generation is not None and generation != state.generation


def _set_root(state: GraphState, command: SetRoot) -> GraphState:
    root = replace(command.root, is_root=True, distance=0)
    return GraphState(
        generation=state.generation + 1,
        root_id=root.id,
        nodes={root.id: root},
        filters=state.filters,
    )


def _merge_data(state: GraphState, command: MergeData) -> GraphState:
    if _is_stale(state, command.generation):
        return state
    nodes, links = merge_graph(
        state.nodes, state.links, command.nodes, command.links, root_id=state.root_id
    )
    return replace(state, nodes=nodes, links=links)


def _mark_expanded(state: GraphState, command: MarkExpanded) -> GraphState:
    if _is_stale(state, command.generation) or command.node_id in state.expanded:
        return state
    return replace(state, expanded=state.expanded | {command.node_id})


def _add_profiles(state: GraphState, command: AddProfiles) -> GraphState:
    if _is_stale(state, command.generation) or not command.profiles:
        return state
    profiles = dict(state.profiles)
    for profile in command.profiles:
        profiles[profile.pubkey] = profile
    return replace(state, profiles=profiles)


def _set_filters(state: GraphState, command: SetFilters) -> GraphState:
    return replace(state, filters=command.filters)


def _reset_filters(state: GraphState, command: ResetFilters) -> GraphState:
    return replace(state, filters=DEFAULT_FILTERS)


def _select_node(state: GraphState, command: SelectNode) -> GraphState:
    return replace(state, selected_id=command.node_id)


def _begin_loading(state: GraphState, command: BeginLoading) -> GraphState:
    return replace(state, loading=state.loading + 1)


def _end_loading(state: GraphState, command: EndLoading) -> GraphState:
    if _is_stale(state, command.generation):
        return state
    return replace(state, loading=max(state.loading - 1, 0))


def _set_error(state: GraphState, command: SetError) -> GraphState:
    return replace(state, error=command.message)


HANDLERS: Dict[type, Callable[[GraphState, Command], GraphState]] = {
    SetRoot: _set_root,
    MergeData: _merge_data,
    MarkExpanded: _mark_expanded,
    AddProfiles: _add_profiles,
    SetFilters: _set_filters,
    ResetFilters: _reset_filters,
    SelectNode: _select_node,
    BeginLoading: _begin_loading,
    EndLoading: _end_loading,
    SetError: _set_error,
}


def apply(state: GraphState, command: Command) -> GraphState:
    """
    Apply one command.

    Raises:
        TypeError: Unknown command type
    """
    handler = HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unknown graph command: {type(command).__name__}")
    return handler(state, command)
