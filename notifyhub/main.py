"""
notifyhub API Server

Entry point for the FastAPI application.
"""

from typing import Optional

import structlog
from fastapi import FastAPI

from notifyhub.api.v1 import router as api_v1_router
from notifyhub.core.config import get_settings
from notifyhub.core.logging import configure_logging
from notifyhub.core.redis import close_arq_pool
from notifyhub.subscribers.registry import RuleRegistry

settings = get_settings()
log = structlog.get_logger()


def _default_registry() -> RuleRegistry:
    if settings.rules_factory is None:
        log.warning("registry.unconfigured", hint="set NOTIFYHUB_RULES_FACTORY")
        registry = RuleRegistry()
    else:
        registry = settings.rules_factory()
    if not registry.frozen:
        registry.freeze()
    return registry


def create_app(registry: Optional[RuleRegistry] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="notifyhub",
        description="Subscriptions and notification updates.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.registry = registry if registry is not None else _default_registry()

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("notifyhub shutting down")
        await close_arq_pool()

    return app


app = create_app()
