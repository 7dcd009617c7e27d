"""API routes package."""

from .routes_graph import router as graph_router

__all__ = [
    "graph_router",
]
