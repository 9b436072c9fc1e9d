"""Task graph orchestrator: plan, select, execute, verify, fix, retry.

Tasks run one at a time, so tool events arrive in the order they happened.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.language_models import BaseChatModel

from config.schema import ClusterConfig, OrchestratorConfig
from config.types import PromptConfig
from core.task.executor import TaskExecutor
from core.task.fixer import ErrorFixer
from core.task.planner import TaskPlanner
from core.task.scope import DirectoryScope
from core.task.store import TaskStore
from core.task.tools import build_project_tools
from core.task.types import ExecutionResult, Task, TaskStatus, ToolCall
from core.task.verifier import ResultVerifier
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError
from sandbox.events import EmitFn, discard_event
from sandbox.provider import WorkloadController

logger = logging.getLogger(__name__)

DEADLOCK_ERROR = "Deadlock: dependencies not satisfied"
ITERATION_LIMIT_ERROR = "Iteration limit reached"
CANCELLED_ERROR = "Cancelled"


class TaskOrchestrator:
    def __init__(
        self,
        planner: TaskPlanner,
        executor: TaskExecutor,
        verifier: ResultVerifier,
        fixer: ErrorFixer,
        config: OrchestratorConfig | None = None,
        *,
        emit: EmitFn = discard_event,
        cancel: CancelToken | None = None,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.verifier = verifier
        self.fixer = fixer
        self.config = config or OrchestratorConfig()
        self.emit = emit
        self.cancel = cancel or CancelToken()
        self.store = TaskStore()

    @classmethod
    def for_project(
        cls,
        model: BaseChatModel,
        controller: WorkloadController,
        project_id: str,
        prompts: dict[str, PromptConfig],
        *,
        cluster: ClusterConfig | None = None,
        config: OrchestratorConfig | None = None,
        game_type: str = "3d",
        emit: EmitFn = discard_event,
        cancel: CancelToken | None = None,
    ) -> TaskOrchestrator:
        config = config or OrchestratorConfig()
        scope = DirectoryScope(cluster or controller.config, game_type)
        tools = build_project_tools(
            controller, project_id, scope, enforce_containment=config.enforce_path_containment
        )
        return cls(
            TaskPlanner(
                model, prompts["planner"], scope,
                max_tasks=config.max_tasks, max_attempts=config.max_task_attempts,
            ),
            TaskExecutor(
                model, tools, prompts["executor"], scope, max_tool_iterations=config.max_tool_iterations
            ),
            ResultVerifier(model, prompts["verifier"], scope),
            ErrorFixer(
                model, tools, prompts["fixer"], scope,
                max_fix_attempts=config.max_fix_attempts, max_tool_iterations=config.max_tool_iterations,
            ),
            config,
            emit=emit,
            cancel=cancel,
        )

    async def run(self, instruction: str, context: str = "") -> TaskStore:
        """Run one instruction to termination and emit ``complete``.

        Raises CancelledRunError (after failing every open task) when the
        cancel token is set; nothing is emitted after cancellation.
        """
        try:
            await self.emit("status", {"message": "Creating task plan..."})
            for task in await self.planner.plan(instruction, context, cancel=self.cancel):
                self.store.add(task)
            await self.emit(
                "plan",
                {"totalTasks": len(self.store.all()), "tasks": [t.to_summary() for t in self.store.all()]},
            )

            iteration = 0
            while not self.store.all_terminal():
                if iteration >= self.config.max_iterations:
                    logger.warning("Iteration limit %d reached", self.config.max_iterations)
                    await self._fail_all(self.store.fail_remaining(ITERATION_LIMIT_ERROR))
                    break
                iteration += 1
                self.cancel.raise_if_cancelled()

                task = self.store.next_executable()
                if task is None:
                    logger.warning("Task graph deadlocked")
                    await self._fail_all(self.store.fail_remaining(DEADLOCK_ERROR, statuses=(TaskStatus.PENDING,)))
                    break
                await self._run_task(task, context)
        except CancelledRunError:
            self.store.fail_remaining(CANCELLED_ERROR)
            logger.info("Task graph cancelled: %s", self.store.summary())
            raise

        await self.emit(
            "complete",
            {
                "summary": self.store.summary(),
                "failedTasks": [
                    {"id": t.id, "description": t.description, "error": t.error}
                    for t in self.store.by_status(TaskStatus.FAILED)
                ],
            },
        )
        return self.store

    async def _on_tool(self, call: ToolCall) -> None:
        await self.emit("tool", {"name": call.tool, "input": call.args})

    async def _on_message(self, text: str) -> None:
        await self.emit("message", {"text": text})

    def _event(self, task: Task, **extra: Any) -> dict[str, Any]:
        return {"taskId": task.id, "description": task.description, **extra}

    async def _run_task(self, task: Task, context: str) -> None:
        self.store.transition(task.id, TaskStatus.IN_PROGRESS)
        await self.emit("task_start", self._event(task, attempt=task.attempts))

        execution = await self.executor.execute(
            task, context, cancel=self.cancel, on_tool=self._on_tool, on_message=self._on_message
        )
        task.tool_calls.extend(execution.tool_calls)
        if not execution.success:
            await self._retry_or_fail(task, execution.error or "Unknown error")
            return
        await self.emit("task_executed", self._event(task, result=execution.result))

        if not self.config.enable_verification:
            await self._complete(task, execution.result)
            return

        await self.emit("status", {"message": "Verifying task result..."})
        self.store.transition(task.id, TaskStatus.VERIFYING)
        verification = await self.verifier.verify(task, execution, context, cancel=self.cancel)
        task.verification = verification
        await self.emit(
            "task_verified",
            self._event(
                task,
                isCorrect=verification.is_correct,
                feedback=verification.feedback,
                confidence=verification.confidence,
            ),
        )
        if verification.is_correct:
            await self._complete(task, execution.result)
            return

        failure = f"Verification failed: {verification.feedback}"
        if not self.config.enable_auto_fix:
            await self._retry_or_fail(task, failure)
            return

        await self.emit("status", {"message": "Attempting to fix error..."})
        self.store.transition(task.id, TaskStatus.FIXING)
        fix: ExecutionResult = await self.fixer.fix(
            task,
            execution,
            verification,
            context,
            cancel=self.cancel,
            on_tool=self._on_tool,
            on_message=self._on_message,
        )
        task.tool_calls.extend(fix.tool_calls)
        if fix.success:
            await self.emit("task_fixed", self._event(task, result=fix.result))
            await self._complete(task, fix.result)
            return
        await self._retry_or_fail(task, failure)

    async def _complete(self, task: Task, result: str) -> None:
        task.result = result
        task.error = None
        self.store.transition(task.id, TaskStatus.COMPLETED)
        await self.emit("task_completed", self._event(task))

    async def _retry_or_fail(self, task: Task, error: str) -> None:
        will_retry = task.attempts < task.max_attempts
        await self.emit("task_failed", self._event(task, error=error, willRetry=will_retry))
        if will_retry:
            task.error = error
            self.store.transition(task.id, TaskStatus.PENDING, reason="retry")
        else:
            self.store.mark_failed(task.id, error)

    async def _fail_all(self, tasks: list[Task]) -> None:
        for task in tasks:
            await self.emit("task_failed", self._event(task, error=task.error, willRetry=False))
