"""Shared FastAPI dependencies for route handlers."""

from fastapi import HTTPException, Request

from vulnrelay.services.collection_engine import CollectionEngine


def get_engine(request: Request) -> CollectionEngine:
    """Return the collection engine started by the application lifespan.

    Raises:
        HTTPException: 503 if the engine has not been started
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Vulnerability engine not available")
    return engine
