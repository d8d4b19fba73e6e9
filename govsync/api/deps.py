"""API dependencies"""

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from govsync.core.config import SyncConfig, settings
from govsync.core.db import SessionLocal
from govsync.ingestion.registry import FetcherRegistry


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_sync_config(request: Request) -> SyncConfig:
    config = getattr(request.app.state, "sync_config", None)
    return config or settings.sync_config()


def get_fetchers(request: Request) -> FetcherRegistry:
    """Fetcher registry built at startup; built lazily when the app runs without lifespan."""
    registry = getattr(request.app.state, "fetchers", None)
    if registry is None:
        registry = FetcherRegistry.build(
            get_sync_config(request),
            rpc_url=settings.RPC_URL,
            snapshot_url=settings.SNAPSHOT_GRAPHQL_URL,
            snapshot_api_key=settings.SNAPSHOT_API_KEY,
        )
        request.app.state.fetchers = registry
    return registry
