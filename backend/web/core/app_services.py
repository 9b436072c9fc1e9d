"""Composition root: everything a request handler needs, built once per app."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from langchain_core.language_models import BaseChatModel

from backend.web.services.chat_service import ChatService
from backend.web.services.event_buffer import RunEventBuffer
from backend.web.services.project_service import ProjectService
from config.loader import SettingsLoader
from config.schema import HitboxSettings
from config.types import PromptConfig
from core.task.llm import create_chat_model
from core.task.session_cache import SessionCache
from sandbox.provider import WorkloadController
from sandbox.providers import create_controller
from sandbox.snapshot import SnapshotManager
from storage.container import StorageContainer
from storage.contracts import ProjectRepo

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: HitboxSettings
    storage: StorageContainer
    controller: WorkloadController
    snapshots: SnapshotManager
    sessions: SessionCache
    prompts: dict[str, PromptConfig]
    project_service: ProjectService
    chat_service: ChatService
    event_buffers: dict[str, RunEventBuffer] = field(default_factory=dict)
    stream_tasks: dict[str, asyncio.Task] = field(default_factory=dict)

    @property
    def projects(self) -> ProjectRepo:
        return self.storage.project_repo()

    def close(self) -> None:
        for task in self.stream_tasks.values():
            task.cancel()
        self.storage.close()


class _LazyModel:
    """Builds the chat model on first use so startup needs no API key."""

    def __init__(self, factory: Callable[[], BaseChatModel]):
        self._factory = factory
        self._model: BaseChatModel | None = None

    def __call__(self) -> BaseChatModel:
        if self._model is None:
            self._model = self._factory()
        return self._model


def build_app_services(
    settings: HitboxSettings | None = None,
    *,
    storage: StorageContainer | None = None,
    controller: WorkloadController | None = None,
    prompts: dict[str, PromptConfig] | None = None,
    model_factory: Callable[[], BaseChatModel] | None = None,
) -> AppServices:
    loader = SettingsLoader()
    settings = settings or loader.load()
    storage = storage or StorageContainer(settings.db_path, settings.blob)
    controller = controller or create_controller(settings)
    prompts = prompts if prompts is not None else loader.load_prompts()
    missing = {"planner", "executor", "verifier", "fixer"} - set(prompts)
    if missing:
        raise RuntimeError(f"Missing prompts: {', '.join(sorted(missing))}")

    snapshots = SnapshotManager(
        controller, storage.blob_store(), storage.snapshot_repo(), settings.snapshot
    )
    sessions = SessionCache(settings.session.ttl_sec)
    model = _LazyModel(model_factory or (lambda: create_chat_model(settings.llm)))

    project_service = ProjectService(
        settings,
        storage.project_repo(),
        storage.conversation_repo(),
        controller,
        snapshots,
        storage.blob_store(),
    )
    chat_service = ChatService(
        settings,
        storage.project_repo(),
        storage.conversation_repo(),
        controller,
        sessions,
        prompts,
        model,
    )
    logger.info("Hitbox services ready (controller=%s, blob=%s)", controller.name, settings.blob.backend)
    return AppServices(
        settings=settings,
        storage=storage,
        controller=controller,
        snapshots=snapshots,
        sessions=sessions,
        prompts=prompts,
        project_service=project_service,
        chat_service=chat_service,
    )
