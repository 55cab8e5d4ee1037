# src/grid_serve/main.py
import platform
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from grid_serve import __version__
from grid_serve.api.errors import (
    http_exception_handler,
    request_validation_exception_handler,
    store_unavailable_handler,
)
from grid_serve.api.files import router as files_router
from grid_serve.config.settings import ConfigurationError, GatewaySettings, load_settings
from grid_serve.core.responder import StreamingResponder
from grid_serve.infra.providers import build_store
from grid_serve.logs import configure_logging
from grid_serve.ports.storage import ChunkStore, StoreUnavailableError


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: GatewaySettings = app.state.settings
    logger.info(
        f"Serving {settings.storage} bucket {settings.database}.{settings.collection} "
        f"(buffer {settings.buffer_size} bytes)"
    )
    yield
    logger.info("Shutting down, closing store")
    app.state.store.close()


def create_app(settings: Optional[GatewaySettings] = None, store: Optional[ChunkStore] = None) -> FastAPI:
    """
    Build the gateway app. Settings and store are passed in explicitly; when
    omitted they are built from the environment (uvicorn --factory).
    """
    if settings is None:
        settings = load_settings()
        configure_logging(settings.log_level)
    if store is None:
        store = build_store(settings)

    app = FastAPI(
        title="grid-serve",
        description="HTTP gateway streaming files out of a GridFS bucket.",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.responder = StreamingResponder(settings)

    app.include_router(files_router)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    return app


def main() -> None:
    configure_logging()
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    configure_logging(settings.log_level)

    logger.info(f"grid-serve version: v{__version__}")
    logger.info(f"python version: {platform.python_version()}")
    logger.info(f"using {settings.workers} worker(s)")

    if settings.ensure_index:
        try:
            store = build_store(settings)
        except ConfigurationError as e:
            logger.error(f"Error: {e}")
            sys.exit(1)
        try:
            store.ensure_indexes()
        except Exception:
            logger.exception("Error: index creation failed")
            sys.exit(1)
        finally:
            store.close()

    import uvicorn
    uvicorn.run(
        "grid_serve.main:create_app",
        factory=True,
        host=settings.listen_host,
        port=settings.listen_port,
        workers=settings.workers,
        log_config=None,
        timeout_keep_alive=60,
    )


if __name__ == "__main__":
    main()
