"""
Application factory for the shop bot API.

Builds the FastAPI application: middleware, rate limiting, routers
(mounted under /api/v1 and at the root) and the health endpoints.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import CORS_ORIGINS
from .middleware import RequestIDMiddleware
from .routes import chat_router, limiter, orders_router, payments_router
from .services.session_store import SESSION_CACHE

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Create the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Shop Bot API",
        description="Conversational order capture for product pages",
        version="1.0.0",
        openapi_tags=[
            {"name": "Health", "description": "Health check endpoints"},
            {"name": "Chat", "description": "Chat endpoints for shoppers"},
            {"name": "Orders", "description": "Order tracking and status"},
            {"name": "Payments", "description": "Payment gateway notifications"},
        ],
    )

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=CORS_ORIGINS != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Include routers with API version prefix
    api_v1 = APIRouter(prefix="/api/v1")
    for router in (chat_router, orders_router, payments_router):
        api_v1.include_router(router)
    app.include_router(api_v1)

    # Also mount at root for the storefront widget
    app.include_router(chat_router)
    app.include_router(orders_router)
    app.include_router(payments_router)

    # Health check endpoints
    @app.get("/health", tags=["Health"])
    def health() -> Dict[str, str]:
        """Health check endpoint. Returns ok if the service is running."""
        return {"status": "ok"}

    @app.get("/health/cache", tags=["Health"])
    def cache_health() -> Dict[str, Any]:
        """Session cache statistics; expired entries are dropped first."""
        removed = SESSION_CACHE.cleanup_expired()
        return {**SESSION_CACHE.stats(), "expired_removed": removed}

    logger.info("Application created (CORS origins: %s)", ", ".join(CORS_ORIGINS))
    return app
