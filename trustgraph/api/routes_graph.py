# trustgraph/api/routes_graph.py
"""
Graph API routes.

Endpoints over the application's exploration session: snapshots, the
filtered projection, searchable node lists, stats, expansion, filters, selection, trust paths,
export and the profile feed.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..errors import UnavailableCapabilityError
from ..graph.export import export_filename
from ..graph.models import GraphData
from ..session import GraphSession

router = APIRouter(prefix="/graph", tags=["graph"])


class InitializeRequest(BaseModel):
    """Start a session around a root (hex or npub). Empty: provider identity."""
    root: Optional[str] = None


class GraphResponse(BaseModel):
    """Graph (full or filtered) with session flags."""
    root_id: Optional[str]
    nodes: List[Dict[str, Any]]
    links: List[Dict[str, Any]]
    node_count: int
    edge_count: int
    is_loading: bool
    error: Optional[str] = None


class ExpandResponse(BaseModel):
    node_id: str
    expanded: bool
    node_count: int
    edge_count: int


class FiltersUpdate(BaseModel):
    """Partial filter update. Omitted fields keep their value."""
    min_trust_score: Optional[float] = None
    max_distance: Optional[int] = None
    show_follows: Optional[bool] = None
    show_mutes: Optional[bool] = None
    show_mutuals_only: Optional[bool] = None
    search_query: Optional[str] = None


class SelectRequest(BaseModel):
    node_id: Optional[str] = None


class TrustPathResponse(BaseModel):
    nodes: List[str]
    distance: int
    score: float


class FeedResponse(BaseModel):
    pubkey: Optional[str]
    notes: List[Dict[str, Any]]
    has_more: bool
    is_loading: bool
    added: int = Field(default=0, description="Notes added by this call")


def get_session(request: Request) -> GraphSession:
    """The application's session (created in the lifespan handler)."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Graph session not available")
    return session


def _graph_response(session: GraphSession, data: GraphData) -> GraphResponse:
    body = data.to_dict()
    return GraphResponse(
        root_id=session.root_id,
        nodes=body["nodes"],
        links=body["links"],
        node_count=data.node_count,
        edge_count=data.edge_count,
        is_loading=session.is_loading,
        error=session.error,
    )


def _require_root(session: GraphSession) -> None:
    if session.root_id is None:
        raise HTTPException(status_code=409, detail="Session has no root; initialize first")


@router.post("/session", response_model=GraphResponse)
async def initialize_session(
    body: InitializeRequest,
    session: GraphSession = Depends(get_session),
) -> GraphResponse:
    """
    (Re)start exploration around a root identity.

    Returns:
        The new graph (root only)
    """
    try:
        await session.initialize(body.root)
    except UnavailableCapabilityError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _graph_response(session, session.snapshot)


@router.get("", response_model=GraphResponse)
async def get_graph(session: GraphSession = Depends(get_session)) -> GraphResponse:
    """Full graph snapshot."""
    return _graph_response(session, session.snapshot)


@router.get("/filtered", response_model=GraphResponse)
async def get_filtered_graph(session: GraphSession = Depends(get_session)) -> GraphResponse:
    """Graph projected through the current filters."""
    return _graph_response(session, session.filtered)


@router.get("/stats")
async def get_stats(session: GraphSession = Depends(get_session)) -> Dict[str, Any]:
    """Stats over the filtered graph, including cache hit rate."""
    return session.stats.to_dict()


@router.post("/nodes/{node_id}/expand", response_model=ExpandResponse)
async def expand_node(
    node_id: str,
    session: GraphSession = Depends(get_session),
) -> ExpandResponse:
    """
    Expand a node's follows.

    Returns expanded=False for no-ops (unknown node, already expanded,
    in flight, or too far from the root).

    Raises:
        503 if the trust provider is missing or not ready
    """
    _require_root(session)
    try:
        expanded = await session.expand_node(node_id)
    except UnavailableCapabilityError as e:
        raise HTTPException(status_code=503, detail=str(e))
    snapshot = session.snapshot
    return ExpandResponse(
        node_id=node_id,
        expanded=expanded,
        node_count=snapshot.node_count,
        edge_count=snapshot.edge_count,
    )


@router.get("/filters")
async def get_filters(session: GraphSession = Depends(get_session)) -> Dict[str, Any]:
    return session.filters.to_dict()


@router.patch("/filters")
async def update_filters(
    body: FiltersUpdate,
    session: GraphSession = Depends(get_session),
) -> Dict[str, Any]:
    """Partial update; numeric filters are clamped into bounds."""
    updates = body.model_dump(exclude_none=True)
    return session.set_filters(**updates).to_dict()


@router.delete("/filters")
async def reset_filters(session: GraphSession = Depends(get_session)) -> Dict[str, Any]:
    return session.reset_filters().to_dict()


@router.post("/select")
async def select_node(
    body: SelectRequest,
    session: GraphSession = Depends(get_session),
) -> Dict[str, Any]:
    node = session.select_node(body.node_id)
    if body.node_id is not None and node is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {body.node_id}")
    return {"selected": node.to_dict() if node else None}


@router.get("/nodes/{node_id}/path", response_model=TrustPathResponse)
async def get_trust_path(
    node_id: str,
    session: GraphSession = Depends(get_session),
) -> TrustPathResponse:
    """Shortest discovered path from the root."""
    path = session.trust_path(node_id)
    if path is None:
        raise HTTPException(status_code=404, detail=f"No path to {node_id}")
    return TrustPathResponse(nodes=path.nodes, distance=path.distance, score=path.score)


@router.get("/nodes")
async def list_nodes(
    sort: str = Query(default="trust", pattern="^(trust|distance|name|recent)$"),
    q: str = Query(default=""),
    session: GraphSession = Depends(get_session),
) -> Dict[str, Any]:
    """Filtered nodes for list views, searched by label or id and sorted."""
    nodes = session.list_nodes(sort_by=sort, query=q)
    return {"sort": sort, "nodes": [n.to_dict() for n in nodes]}


@router.get("/nodes/{node_id}/neighbors")
async def get_neighbors(
    node_id: str,
    session: GraphSession = Depends(get_session),
) -> Dict[str, Any]:
    if session.store.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    neighbors = session.neighbors(node_id)
    return {"node_id": node_id, "neighbors": [n.to_dict() for n in neighbors]}


@router.get("/profiles")
async def get_profiles(session: GraphSession = Depends(get_session)) -> Dict[str, Any]:
    return {key: profile.to_dict() for key, profile in session.profiles.items()}


@router.get("/export")
async def export_graph(
    format: str = Query(default="json", pattern="^(json|csv)$"),
    session: GraphSession = Depends(get_session),
) -> Response:
    """Download the filtered graph as JSON or CSV."""
    if format == "csv":
        content, media_type = session.export_csv(), "text/csv"
    else:
        content, media_type = session.export_json(), "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(format)}"'},
    )


def _feed_response(session: GraphSession, added: int) -> FeedResponse:
    feed = session.feed
    return FeedResponse(
        pubkey=feed.pubkey,
        notes=[n.to_dict() for n in feed.notes],
        has_more=feed.has_more,
        is_loading=feed.is_loading,
        added=added,
    )


@router.get("/feed/{pubkey}", response_model=FeedResponse)
async def get_feed(
    pubkey: str,
    session: GraphSession = Depends(get_session),
) -> FeedResponse:
    """First page of an identity's notes (resets the feed)."""
    notes = await session.load_feed(pubkey)
    return _feed_response(session, len(notes))


@router.post("/feed/more", response_model=FeedResponse)
async def load_more_feed(session: GraphSession = Depends(get_session)) -> FeedResponse:
    """Next older page of the current feed."""
    added = await session.load_more_feed()
    return _feed_response(session, len(added))
