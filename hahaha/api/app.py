"""FastAPI application factory for the health/metrics endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from hahaha.api.routes import router

if TYPE_CHECKING:
    from hahaha.controller.manager import ControllerManager


def create_app(manager: ControllerManager) -> FastAPI:
    """Build the app; routes read liveness and readiness from ``manager``."""
    from hahaha import __version__

    app = FastAPI(title="hahaha", version=__version__, docs_url=None, redoc_url=None)
    app.state.manager = manager
    app.include_router(router)
    return app
