"""Fix capability: bounded, independent repair attempts after failed verification."""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.tools import BaseTool

from config.types import PromptConfig
from core.task.executor import OnMessageFn, OnToolFn, run_tool_loop
from core.task.llm import format_tool_calls
from core.task.scope import DirectoryScope
from core.task.types import ExecutionResult, Task, VerificationResult
from sandbox.cancel import CancelToken

logger = logging.getLogger(__name__)


class ErrorFixer:
    def __init__(
        self,
        model: BaseChatModel,
        tools: list[BaseTool],
        prompt: PromptConfig,
        scope: DirectoryScope,
        *,
        max_fix_attempts: int = 2,
        max_tool_iterations: int | None = None,
    ) -> None:
        self.model = model
        self.tools = tools
        self.prompt = prompt
        self.scope = scope
        self.max_fix_attempts = max_fix_attempts
        self.max_tool_iterations = max_tool_iterations or prompt.max_tool_iterations or 10

    async def fix(
        self,
        task: Task,
        execution: ExecutionResult,
        verification: VerificationResult,
        context: str = "",
        *,
        cancel: CancelToken | None = None,
        on_tool: OnToolFn | None = None,
        on_message: OnMessageFn | None = None,
    ) -> ExecutionResult:
        # every attempt starts from the same original context
        prompt = self.prompt.render(
            task=task.description,
            result=execution.result,
            feedback=verification.feedback,
            tool_calls=format_tool_calls(execution.tool_calls),
            context=f"Context:\n{context}" if context else "",
            scope=self.scope.rules(),
        )
        last_error = "no fix attempts allowed"
        for attempt in range(1, self.max_fix_attempts + 1):
            result = await run_tool_loop(
                self.model,
                self.tools,
                prompt,
                max_iterations=self.max_tool_iterations,
                cancel=cancel,
                on_tool=on_tool,
                on_message=on_message,
            )
            if result.success:
                return result
            last_error = result.error or "Unknown error"
            logger.info("Fix attempt %d/%d for %s failed: %s", attempt, self.max_fix_attempts, task.id, last_error)

        return ExecutionResult(
            success=False,
            error=f"Failed to fix after {self.max_fix_attempts} attempts. Last error: {last_error}",
        )
