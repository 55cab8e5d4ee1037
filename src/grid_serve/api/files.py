# src/grid_serve/api/files.py
from fastapi import APIRouter, Depends, Header, Request, Response, status
from typing import Optional

from loguru import logger

from grid_serve.config.settings import GatewaySettings
from grid_serve.core.responder import StreamingResponder
from grid_serve.ports.storage import ChunkStore

# Every method is routed here so that non-GET requests get a bodiless 405
# without ever touching the store.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ---------- Dependencies (overridable in tests) ----------
def get_store(request: Request) -> ChunkStore:
    return request.app.state.store


def get_settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


def get_responder(request: Request) -> StreamingResponder:
    return request.app.state.responder


router = APIRouter(tags=["files"])


@router.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
def serve_file(
    path: str,
    request: Request,
    if_none_match: Optional[str] = Header(default=None),
    settings: GatewaySettings = Depends(get_settings),
    responder: StreamingResponder = Depends(get_responder),
    store: ChunkStore = Depends(get_store),
) -> Response:
    if request.method != "GET":
        return Response(status_code=status.HTTP_405_METHOD_NOT_ALLOWED)

    name = path.rsplit("/", 1)[-1]
    if not name or name in settings.excluded_names:
        logger.debug(f"{name!r}: excluded name")
        return responder.not_found()

    return responder.serve(store, name, if_none_match)
