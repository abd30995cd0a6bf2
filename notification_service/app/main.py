"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI, Response

from notification_service.app.exception_handlers import configure_exception_handlers
from notification_service.app.lifespan import lifespan
from notification_service.core.settings import get_app_settings
from notification_service.features.notifications.router import admin_router, router as notifications_router
from notification_service.infra.metrics import CONTENT_TYPE_LATEST, REGISTRY, generate_latest


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_app_settings()

    app = FastAPI(
        title=settings.title,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    configure_exception_handlers(app)

    app.include_router(notifications_router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)

    @app.get("/metrics", include_in_schema=False, tags=["observability"])
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app


# Application instance for uvicorn
app = create_app()
