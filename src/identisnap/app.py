"""
FastAPI application factory.
"""

from __future__ import annotations

from fastapi import FastAPI

from identisnap.config import get_settings
from identisnap.core.exceptions import register_exception_handlers
from identisnap.core.lifespan import lifespan
from identisnap.routers import health, info, locate, locations, match


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(info.router, tags=["Operations"])
    app.include_router(locations.router, tags=["Catalog"])
    app.include_router(locate.router, tags=["Recognition"])
    app.include_router(match.router, tags=["Matching"])

    return app
