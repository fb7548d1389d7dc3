"""QuoteDesk Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from quotedesk_core.api.routes import queue as queue_routes
from quotedesk_core.api.routes import training as training_routes
from quotedesk_core.config import get_settings
from quotedesk_core.infra.db import dispose_engine
from quotedesk_core.observability import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging on startup; release pooled connections on shutdown."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="quotedesk-core",
    )
    app.state.settings = settings
    yield
    dispose_engine()


app = FastAPI(
    title="QuoteDesk Core API",
    description="Conversation-order reconciliation and shared lead queue for repair quotes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(queue_routes.router)
app.include_router(training_routes.router)


@app.get("/healthz")
async def health_check(request: Request) -> dict:
    """Health check; also reports which collaborators have credentials."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return {
        "ok": True,
        "service": "quotedesk-core",
        "providers": {
            "zoko": settings.zoko_configured,
            "shopify": settings.shopify_configured,
        },
    }


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "QuoteDesk Core API",
        "version": "0.1.0",
        "status": "running",
    }
