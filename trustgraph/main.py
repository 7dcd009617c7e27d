# trustgraph/main.py
"""
Trust Graph Explorer - Main Application

Incrementally explores a web-of-trust graph from a root identity, scores
every discovered identity by distance and corroborating paths, and serves
filtered views of the graph to the UI layer.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .api import graph_router
from .cache.profile_cache import LocalCache
from .cache.storage import SqlStorage
from .db.engine import check_connection, create_cache_engine
from .ingestion.provider import OracleTrustProvider
from .ingestion.relays import MultiSourceFetcher
from .logging import get_logger
from .session import GraphSession
from .settings import settings

logger = get_logger(__name__)


def build_session() -> GraphSession:
    """Session wired from settings: SQL-backed cache, oracle provider if configured."""
    storage = SqlStorage(create_cache_engine())
    cache = LocalCache(storage, ttl_seconds=settings.cache_ttl_hours * 3600)
    provider = None
    if settings.oracle_url:
        provider = OracleTrustProvider(my_pubkey=settings.my_pubkey)
    return GraphSession(
        provider=provider,
        cache=cache,
        fetcher=MultiSourceFetcher(settings.relay_urls),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Opens the default session on startup and closes it on shutdown.
    """
    logger.info("app_starting", relays=len(settings.relay_urls), oracle=bool(settings.oracle_url))
    session = build_session()
    app.state.session = session

    yield

    logger.info("app_stopping")
    await session.close()
    app.state.session = None
    if isinstance(session.cache.storage, SqlStorage):
        session.cache.storage.close()


app = FastAPI(
    title="Trust Graph Explorer",
    description="""
    Web-of-trust graph exploration engine.

    Key features:
    - Incremental expansion from a root identity with per-node state machine
    - Trust scores from hop distance and corroborating paths
    - Concurrent relay queries under fixed time budgets
    - Versioned local cache for profiles and trust facts
    - Pure filter/projection views, stats and export
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# In production, set ALLOWED_ORIGINS to specific domains
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(graph_router)


@app.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "ok", "service": "trustgraph"}


@app.get("/health/cache")
async def cache_health_check():
    """Cache database health check."""
    session = getattr(app.state, "session", None)
    storage = session.cache.storage if session is not None else None
    if isinstance(storage, SqlStorage) and check_connection(storage.engine):
        return {"status": "ok", "cache": "connected"}
    raise HTTPException(status_code=503, detail="Cache database unavailable")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
