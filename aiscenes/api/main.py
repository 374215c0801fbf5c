"""
AI Scenes Node Service - FastAPI Application

Backend for storyboard jobs and their node documents.
Provides:
- Hybrid ltree + JSON path reads and writes on node content
- Node queries, dependency checks and template materialization
- n8n workflow execution with credit accounting
- Storyboard job intake
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from aiscenes import __version__
from aiscenes.api.middleware import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    get_cors_origins,
)
from aiscenes.api.routes import health, ltree, n8n, nodes, storyboard
from aiscenes.config import get_settings
from aiscenes.db.client import close_db, init_db
from aiscenes.kernel.http.errors import register_exception_handlers

# Map log level string to logging constant
_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _get_log_level() -> int:
    """Get numeric log level from settings."""
    level_str = get_settings().log_level.lower()
    return _LOG_LEVEL_MAP.get(level_str, logging.INFO)


# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
        if get_settings().log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    settings = get_settings()

    logger.info("Starting AI Scenes node service", version=__version__, environment=settings.environment)

    if settings.environment == "test":
        logger.info("Skipping database initialization in test environment")
    else:
        await init_db()
        logger.info("PostgreSQL connection initialized")

    yield

    logger.info("Shutting down AI Scenes node service")
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="AI Scenes Node Service",
    description="Node documents, hybrid address resolution and n8n workflow execution",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Request ID tracking
app.add_middleware(RequestIDMiddleware)

# Security headers
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware (must be after security headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "ETag"],
)

# Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(ltree.router, prefix="/api/v1")
app.include_router(nodes.router, prefix="/api/v1")
app.include_router(n8n.router, prefix="/api/v1")
app.include_router(storyboard.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "AI Scenes Node Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
