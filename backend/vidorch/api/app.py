"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vidorch import __version__, validate_dependencies
from vidorch.api.routes import router
from vidorch.api.websocket import router as websocket_router
from vidorch.config import settings
from vidorch.context import AppContext

logger = logging.getLogger(__name__)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the API application.

    A prebuilt context (tests, embedding) is used as is and left open on
    shutdown; otherwise one is created from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Validate system dependencies (ffmpeg) unless a context was supplied
            - Build the application context

        Shutdown:
            - Cancel running tasks and close collaborator clients
        """
        logger.info("Starting Music Video Orchestrator API...")
        owned = context is None
        if owned:
            validate_dependencies()
            app.state.context = AppContext.create(settings)
        else:
            app.state.context = context
        logger.info("API startup complete")

        yield

        logger.info("Shutting down Music Video Orchestrator API...")
        if owned:
            await app.state.context.close()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Music Video Orchestrator",
        version=__version__,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(websocket_router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            }
        )

    return app


app = create_app()
