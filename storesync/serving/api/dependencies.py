"""
Route Dependencies
"""

from fastapi import HTTPException, Request

from storesync.sync.engine import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    """FastAPI dependency returning the engine built at startup."""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return engine
