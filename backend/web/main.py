"""Hitbox Web Backend - FastAPI Application."""

import logging
import os
from collections.abc import Callable

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.web.core.app_services import AppServices
from backend.web.core.lifespan import lifespan
from backend.web.routers import chat, projects


def create_app(services_factory: Callable[[], AppServices] | None = None) -> FastAPI:
    app = FastAPI(title="Hitbox Web Backend", lifespan=lifespan)
    # @@@services-factory - tests inject prebuilt services; lifespan falls back to build_app_services.
    app.state.services_factory = services_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(projects.router)
    app.include_router(chat.router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def _resolve_port() -> int:
    """Resolve backend port: HITBOX_PORT > PORT > 8001."""
    port = os.environ.get("HITBOX_PORT") or os.environ.get("PORT")
    return int(port) if port else 8001


def run() -> None:
    logging.basicConfig(
        level=os.environ.get("HITBOX_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # @@@module-launch-target - package-qualified target keeps `python -m backend.web.main` import-safe.
    uvicorn.run("backend.web.main:app", host="0.0.0.0", port=_resolve_port())


if __name__ == "__main__":
    run()
