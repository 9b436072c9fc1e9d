"""Planning capability: instruction -> task list."""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from config.types import PromptConfig
from core.task.llm import message_text, parse_json_object
from core.task.scope import DirectoryScope
from core.task.types import Task
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError

logger = logging.getLogger(__name__)


class TaskPlanner:
    def __init__(
        self,
        model: BaseChatModel,
        prompt: PromptConfig,
        scope: DirectoryScope,
        *,
        max_tasks: int = 10,
        max_attempts: int = 3,
    ) -> None:
        self.model = model
        self.prompt = prompt
        self.scope = scope
        self.max_tasks = max_tasks
        self.max_attempts = max_attempts

    def fallback(self, instruction: str) -> list[Task]:
        return [Task(id="task-1", description=instruction, max_attempts=self.max_attempts)]

    def parse_plan(self, text: str) -> list[Task]:
        """Raises ValueError (or a JSON/pydantic error) on anything but a usable plan."""
        raw_tasks = parse_json_object(text).get("tasks")
        if not isinstance(raw_tasks, list) or not raw_tasks:
            raise ValueError("Plan has no tasks")

        tasks: list[Task] = []
        seen: set[str] = set()
        for i, raw in enumerate(raw_tasks[: self.max_tasks], 1):
            if not isinstance(raw, dict) or not str(raw.get("description", "")).strip():
                raise ValueError(f"Task #{i} has no description")
            task_id = str(raw.get("id") or f"task-{i}")
            if task_id in seen:
                raise ValueError(f"Duplicate task id {task_id}")
            seen.add(task_id)
            deps = raw.get("dependencies") or []
            if not isinstance(deps, list):
                raise ValueError(f"Task {task_id} dependencies must be a list")
            tasks.append(
                Task(
                    id=task_id,
                    description=str(raw["description"]),
                    dependencies=[str(d) for d in deps],
                    max_attempts=self.max_attempts,
                )
            )
        return tasks

    async def plan(self, instruction: str, context: str = "", cancel: CancelToken | None = None) -> list[Task]:
        """Never fails: any planning problem degrades to a single fallback task."""
        if cancel is not None:
            cancel.raise_if_cancelled()
        prompt = self.prompt.render(
            instruction=instruction,
            context=f"Context:\n{context}" if context else "",
            scope=self.scope.rules(),
            max_tasks=str(self.max_tasks),
        )
        try:
            response = await self.model.ainvoke([HumanMessage(content=prompt)])
            tasks = self.parse_plan(message_text(response))
        except CancelledRunError:
            raise
        except Exception as e:
            logger.warning("Planning failed, using single fallback task: %s", e)
            return self.fallback(instruction)
        logger.info("Planned %d tasks", len(tasks))
        return tasks
