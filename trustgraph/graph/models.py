# trustgraph/graph/models.py
"""
Graph models for the trust graph.

Core entities:
- GraphNode: Discovered identity with distance, path count and trust score
- GraphEdge: Directed follow/mute edge between two identities
- GraphData: Node + edge collection (full graph or a projection of it)
- GraphFilters: Pure projection parameters
- NodeProfile / Note: Relay content attached to identities
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class EdgeType(Enum):
    """Edge types between identities."""
    FOLLOW = "follow"
    MUTE = "mute"


@dataclass(frozen=True)
class GraphNode:
    """
    Identity discovered while exploring the graph.

    Only path_count and trust_score change after creation, and only
    through the store's merge command.
    """
    id: str  # Identity key (hex pubkey)
    label: str
    distance: int  # Hops from root, fixed at first discovery
    path_count: int = 1
    trust_score: float = 0.0
    picture: Optional[str] = None
    is_root: bool = False
    is_mutual: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "label": self.label,
            "picture": self.picture,
            "distance": self.distance,
            "path_count": self.path_count,
            "trust_score": self.trust_score,
            "is_root": self.is_root,
            "is_mutual": self.is_mutual,
        }


@dataclass(frozen=True)
class GraphEdge:
    """Directed edge, identified by its (source, target) pair."""
    source: str
    target: str
    type: EdgeType = EdgeType.FOLLOW
    strength: float = 0.0  # Target trust score at creation
    bidirectional: bool = False

    @property
    def key(self) -> tuple:
        return (self.source, self.target)

    def to_dict(self) -> Dict[str, object]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "strength": self.strength,
            "bidirectional": self.bidirectional,
        }


@dataclass(frozen=True)
class GraphData:
    """
    Node and edge collection.

    Used both for the full session graph and for filtered projections.
    """
    nodes: tuple = ()
    links: tuple = ()

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.links)

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        """Find node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "links": [e.to_dict() for e in self.links],
        }


@dataclass(frozen=True)
class GraphFilters:
    """Projection parameters. Never affect the stored graph."""
    min_trust_score: float = 0.0
    max_distance: int = 3
    show_follows: bool = True
    show_mutes: bool = False
    show_mutuals_only: bool = False
    search_query: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "min_trust_score": self.min_trust_score,
            "max_distance": self.max_distance,
            "show_follows": self.show_follows,
            "show_mutes": self.show_mutes,
            "show_mutuals_only": self.show_mutuals_only,
            "search_query": self.search_query,
        }


DEFAULT_FILTERS = GraphFilters()

# Bounds applied by filter setters
MIN_TRUST_BOUNDS = (0.0, 1.0)
MAX_DISTANCE_BOUNDS = (1, 5)


@dataclass(frozen=True)
class GraphStats:
    """Aggregate statistics over a (usually filtered) graph."""
    total_nodes: int = 0
    total_edges: int = 0
    avg_trust_score: float = 0.0
    max_distance: int = 0
    mutual_count: int = 0
    cache_hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "avg_trust_score": self.avg_trust_score,
            "max_distance": self.max_distance,
            "mutual_count": self.mutual_count,
            "cache_hit_rate": self.cache_hit_rate,
        }


@dataclass(frozen=True)
class NodeProfile:
    """Profile metadata published by an identity (kind 0)."""
    pubkey: str
    name: Optional[str] = None
    display_name: Optional[str] = None
    picture: Optional[str] = None
    about: Optional[str] = None
    nip05: Optional[str] = None

    @property
    def best_name(self) -> Optional[str]:
        return self.display_name or self.name

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "pubkey": self.pubkey,
            "name": self.name,
            "display_name": self.display_name,
            "picture": self.picture,
            "about": self.about,
            "nip05": self.nip05,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Optional[str]]) -> "NodeProfile":
        return cls(
            pubkey=data["pubkey"],
            name=data.get("name"),
            display_name=data.get("display_name"),
            picture=data.get("picture"),
            about=data.get("about"),
            nip05=data.get("nip05"),
        )


@dataclass(frozen=True)
class Note:
    """Feed item (kind 1)."""
    id: str
    pubkey: str
    content: str
    created_at: int
    tags: List[List[str]] = field(default_factory=list)
    sig: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "content": self.content,
            "created_at": self.created_at,
            "tags": self.tags,
            "sig": self.sig,
        }


@dataclass(frozen=True)
class TrustPath:
    """Shortest discovered path from the root to a node."""
    nodes: List[str]
    distance: int
    score: float


@dataclass(frozen=True)
class TrustFact:
    """
    Resolved distance/paths for an identity.

    paths is None when the resolver could not count paths. score is always
    recomputed from distance and paths, never trusted from storage.
    """
    distance: Optional[int]
    paths: Optional[int] = None
    score: Optional[float] = None

    @property
    def paths_resolved(self) -> bool:
        return self.paths is not None
