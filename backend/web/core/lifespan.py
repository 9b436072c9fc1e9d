"""Application lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.web.core.app_services import build_app_services
from backend.web.services.idle_reaper import idle_reaper_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown."""
    factory = getattr(app.state, "services_factory", None) or build_app_services
    services = factory()
    app.state.services = services
    app.state.idle_reaper_task = None

    try:
        if services.settings.reaper.enabled:
            app.state.idle_reaper_task = asyncio.create_task(idle_reaper_loop(services))
        yield
    finally:
        task = app.state.idle_reaper_task
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            services.close()
        except Exception as e:
            logger.error("Service cleanup error: %s", e)
