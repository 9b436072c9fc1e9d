"""Chat turns: persist the message, run the task graph, persist the answer."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from langchain_core.language_models import BaseChatModel

from config.schema import HitboxSettings
from config.types import PromptConfig
from core.task.history import build_task_history, format_conversation
from core.task.orchestrator import TaskOrchestrator
from core.task.session_cache import SessionCache, session_key
from core.task.store import TaskStore
from core.task.types import TaskStatus
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError
from sandbox.events import EmitFn
from sandbox.provider import WorkloadController
from storage.contracts import ConversationRepo, ProjectRepo
from storage.models import ConversationTurnRow, ProjectRow

logger = logging.getLogger(__name__)


def summarize_run(store: TaskStore) -> str:
    """Assistant turn text: completed results, then failures."""
    lines: list[str] = []
    for task in store.by_status(TaskStatus.COMPLETED):
        lines.append(f"- {task.description}")
        if task.result:
            lines.append(f"  {task.result}")
    failed = store.by_status(TaskStatus.FAILED)
    if failed:
        lines.append("")
        lines.append("Failed:")
        for task in failed:
            lines.append(f"- {task.description}: {task.error or 'unknown error'}")
    return "\n".join(lines) or "No tasks were run."


def build_context(turns: list[ConversationTurnRow]) -> str:
    history = build_task_history(turns)
    parts = []
    conversation = format_conversation(turns)
    if conversation:
        parts.append("RECENT CONVERSATION:\n" + conversation)
    if history.summary:
        parts.append(history.summary)
    return "\n\n".join(parts)


class ChatService:
    def __init__(
        self,
        settings: HitboxSettings,
        projects: ProjectRepo,
        conversations: ConversationRepo,
        controller: WorkloadController,
        sessions: SessionCache,
        prompts: dict[str, PromptConfig],
        model_factory: Callable[[], BaseChatModel],
    ) -> None:
        self.settings = settings
        self.projects = projects
        self.conversations = conversations
        self.controller = controller
        self.sessions = sessions
        self.prompts = prompts
        self._model_factory = model_factory

    def _session_id(self, user_id: str, project_id: str) -> str:
        key = session_key(user_id, project_id)
        session_id = self.sessions.get(key)
        if session_id is None:
            session_id = uuid.uuid4().hex
            logger.info("New chat session %s for %s", session_id, key)
        self.sessions.set(key, session_id)
        return session_id

    def _append(self, project_id: str, role: str, content: str, **extra: Any) -> ConversationTurnRow:
        turn = ConversationTurnRow(
            id=uuid.uuid4().hex,
            project_id=project_id,
            role=role,
            content=content,
            created_at=time.time(),
            **extra,
        )
        return self.conversations.append(turn)

    async def run_chat(
        self,
        row: ProjectRow,
        user_id: str,
        message: str,
        emit: EmitFn,
        cancel: CancelToken,
    ) -> TaskStore:
        session_id = self._session_id(user_id, row.id)
        await asyncio.to_thread(self._append, row.id, "user", message, metadata={"sessionId": session_id})
        turns = await asyncio.to_thread(
            self.conversations.list_by_project, row.id, last=self.settings.orchestrator.history_turns
        )
        context = build_context(turns)

        orchestrator = TaskOrchestrator.for_project(
            self._model_factory(),
            self.controller,
            row.id,
            self.prompts,
            config=self.settings.orchestrator,
            game_type=row.game_type,
            emit=emit,
            cancel=cancel,
        )
        try:
            store = await orchestrator.run(message, context)
        except CancelledRunError:
            store = orchestrator.store
            await asyncio.to_thread(self._record_answer, row.id, store, session_id, cancelled=True)
            raise
        await asyncio.to_thread(self._record_answer, row.id, store, session_id)
        return store

    def _record_answer(self, project_id: str, store: TaskStore, session_id: str, *, cancelled: bool = False) -> None:
        tool_calls = [call.to_dict() for task in store.all() for call in task.tool_calls]
        content = summarize_run(store)
        if cancelled:
            content = "Cancelled.\n" + content
        self._append(
            project_id,
            "assistant",
            content,
            tool_calls=tool_calls or None,
            task_graph=store.to_graph(),
            metadata={"sessionId": session_id, "summary": store.summary(), "cancelled": cancelled},
        )
        self.projects.touch(project_id)
