"""HTTP endpoint that lets external providers fetch cached segments."""

import hashlib
import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, Header
from fastapi.responses import JSONResponse, Response

from . import __version__
from .cache import ArtifactCache
from .errors import CacheMiss

logger = logging.getLogger(__name__)


def _etag(blob: bytes) -> str:
    return f'"{hashlib.sha256(blob).hexdigest()}"'


def _matches(if_none_match: Optional[str], etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [value.strip() for value in if_none_match.split(",")]
    return "*" in candidates or etag in candidates or etag.strip('"') in candidates


def create_router(cache: ArtifactCache) -> APIRouter:
    """Router exposing cache reads. Unauthenticated; tokens are unguessable."""
    router = APIRouter(tags=["segments"])

    @router.get("/segments/{token}")
    def fetch_segment(token: str, if_none_match: Optional[str] = Header(None)):
        """Serve a cached segment by token."""
        try:
            entry = cache.lookup(token)
        except CacheMiss as e:
            logger.info(f"Segment fetch miss ({e.reason}) for {token[:8]}...")
            return JSONResponse(status_code=404, content={"error": e.reason})

        etag = _etag(entry.blob)
        if _matches(if_none_match, etag):
            return Response(status_code=304, headers={"ETag": etag})

        return Response(
            content=entry.blob,
            media_type=entry.content_type,
            headers={"ETag": etag, "Cache-Control": "private, no-transform"},
        )

    return router


def create_app(cache: ArtifactCache) -> FastAPI:
    """Build the segment server app around a cache instance."""
    app = FastAPI(title="reelforge segments", version=__version__)
    app.state.cache = cache
    app.include_router(create_router(cache))

    @app.get("/health")
    def health():
        return {"status": "ok", "segments": len(cache)}

    return app
