"""FastAPI application factory for the Solaris operator API."""

from __future__ import annotations

from fastapi import FastAPI, Request

from solaris import __version__
from solaris.config.manager import ConfigManager
from solaris.config.schema import AppConfig
from solaris.control.automation import AutomationController


def create_app(
    config: AppConfig,
    controller: AutomationController,
    config_manager: ConfigManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Solaris",
        description="Relay coordination and battery-driven load allocation",
        version=__version__,
    )

    @app.middleware("http")
    async def disable_cache(request: Request, call_next):
        response = await call_next(request)
        if request.method in {"GET", "HEAD"}:
            response.headers["Cache-Control"] = "no-store"
        return response

    # Live references for the routes
    app.state.config = config
    app.state.controller = controller
    app.state.config_manager = config_manager

    from solaris.api.routes.automation import router as automation_router
    from solaris.api.routes.relays import router as relays_router
    from solaris.api.routes.status import router as status_router

    app.include_router(status_router, prefix="/api")
    app.include_router(relays_router, prefix="/api")
    app.include_router(automation_router, prefix="/api")

    return app
