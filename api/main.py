"""
LifeGraph - Identity graph and sync ingestion service
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000

The graph services live on app.state.graph (a GraphContainer), built once
by the lifespan and shared by every request.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import graph
from api.services.container import GraphContainer

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


def create_app(container: Optional[GraphContainer] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        container: Pre-built services (tests pass an in-memory one). When
            None, the lifespan builds one from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        graph_container = container or GraphContainer.from_settings()
        graph_container.start()
        app.state.graph = graph_container
        logger.info("LifeGraph started")
        try:
            yield
        finally:
            graph_container.close()
            logger.info("LifeGraph stopped")

    app = FastAPI(
        title="LifeGraph",
        description="Identity resolution and sync ingestion across contacts, mail and chat exports",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(graph.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check with graph counts and sync status."""
        graph_container: GraphContainer = request.app.state.graph
        stats = graph_container.store.get_statistics()
        sync = graph_container.tracker.get_sync_summary()
        return {
            "status": "healthy" if stats["durable_failures"] == 0 else "degraded",
            "service": "lifegraph",
            "graph": stats,
            "sync": sync,
        }

    return app


app = create_app()
