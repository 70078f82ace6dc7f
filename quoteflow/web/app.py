"""
FastAPI application factory.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from quoteflow import __version__
from quoteflow.core.config import QuoteflowSettings, get_settings
from quoteflow.core.exceptions import FetchError, QuoteflowError, SymbolNotFoundError
from quoteflow.core.logging import configure_logging, get_logger
from quoteflow.core.runtime import QuoteflowRuntime
from quoteflow.web.broadcast import BroadcastHub, TokenAuthenticator
from quoteflow.web.metrics import router as metrics_router
from quoteflow.web.models import ErrorResponse
from quoteflow.web.routes import health_router, live_router, stream_router

logger = get_logger(__name__)


def create_app(
    settings: QuoteflowSettings | None = None,
    *,
    runtime: QuoteflowRuntime | None = None,
    start_schedulers: bool = True,
) -> FastAPI:
    """Create the FastAPI app.

    A prebuilt ``runtime`` is used as-is and left open on shutdown; otherwise
    one is built from ``settings`` at startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = runtime is None
        active = runtime or QuoteflowRuntime.build(settings or get_settings())
        broadcast = active.settings.broadcast
        token = broadcast.access_token.get_secret_value() if broadcast.access_token else None
        hub = BroadcastHub(
            active.bus,
            authenticator=TokenAuthenticator(token),
            max_connections_per_address=broadcast.max_connections_per_address,
            metrics=active.metrics,
        )
        hub.attach()
        app.state.runtime = active
        app.state.broadcast_hub = hub

        if start_schedulers:
            await active.start()
        else:
            active.warm_start()
        logger.info("quoteflow service started")

        yield

        await active.stop()
        hub.detach()
        if owned:
            active.close()
        logger.info("quoteflow service stopped")

    app = FastAPI(
        title="quoteflow",
        description="Live market snapshot, daily history recorder and push broadcasting",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    _setup_middleware(app)
    _setup_routes(app)
    _setup_exception_handlers(app)
    return app


def _setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)


def _setup_routes(app: FastAPI) -> None:
    app.include_router(live_router, prefix="/api/v1/live", tags=["live"])
    app.include_router(health_router, prefix="/api/v1", tags=["health"])
    app.include_router(stream_router, tags=["stream"])
    app.include_router(metrics_router)


def _error(status_code: int, error: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=str(uuid.uuid4()),
        ).model_dump(mode="json"),
    )


def _setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(QuoteflowError)
    async def quoteflow_exception_handler(request: Request, exc: QuoteflowError) -> JSONResponse:
        if isinstance(exc, SymbolNotFoundError):
            status_code = 404
        elif isinstance(exc, FetchError):
            status_code = 502
        else:
            status_code = 400
        return _error(
            status_code,
            exc.__class__.__name__,
            exc.message,
            {"error_code": exc.error_code, "context": exc.details},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, "HTTPException", str(exc.detail), {"status_code": exc.status_code})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.url.path}")
        return _error(500, "InternalServerError", "Internal server error", {"type": type(exc).__name__})


def create_service_app() -> FastAPI:
    """Entry point for ``uvicorn --factory``: configures logging from settings first."""

    settings = get_settings()
    configure_logging(settings.logging.level, file_output=bool(settings.logging.file_path), file_path=settings.logging.file_path)
    return create_app(settings)
