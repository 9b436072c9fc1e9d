"""Execution capability: tool-calling loop against the project sandbox."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage
from langchain_core.tools import BaseTool

from config.types import PromptConfig
from core.task.llm import message_text
from core.task.scope import DirectoryScope
from core.task.types import ExecutionResult, Task, ToolCall
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError

logger = logging.getLogger(__name__)

OnToolFn = Callable[[ToolCall], Awaitable[None]]
OnMessageFn = Callable[[str], Awaitable[None]]


async def run_tool_loop(
    model: BaseChatModel,
    tools: list[BaseTool],
    prompt: str,
    *,
    max_iterations: int,
    cancel: CancelToken | None = None,
    on_tool: OnToolFn | None = None,
    on_message: OnMessageFn | None = None,
) -> ExecutionResult:
    """Alternate model turns and tool calls until the model answers in text.

    Returns an unsuccessful result when the model errors or the tool
    iteration limit is reached; only cancellation propagates.
    """
    by_name = {t.name: t for t in tools}
    bound = model.bind_tools(tools)
    messages: list[BaseMessage] = [HumanMessage(content=prompt)]
    records: list[ToolCall] = []

    try:
        for _ in range(max_iterations):
            if cancel is not None:
                cancel.raise_if_cancelled()
            response = await bound.ainvoke(messages)
            messages.append(response)
            text = message_text(response)
            if text.strip() and on_message is not None:
                await on_message(text)

            calls = getattr(response, "tool_calls", None) or []
            if not calls:
                return ExecutionResult(success=True, result=text, tool_calls=records)

            for call in calls:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                name = call.get("name", "")
                args = call.get("args") or {}
                tool = by_name.get(name)
                if tool is None:
                    output = f"Error: Tool '{name}' not found"
                else:
                    output = str(await tool.ainvoke(args))
                record = ToolCall(tool=name, args=args, result=output)
                records.append(record)
                if on_tool is not None:
                    await on_tool(record)
                messages.append(ToolMessage(content=output, tool_call_id=call.get("id") or "", name=name))
    except CancelledRunError:
        raise
    except Exception as e:
        logger.warning("Tool loop failed: %s", e)
        return ExecutionResult(success=False, tool_calls=records, error=str(e))

    return ExecutionResult(
        success=False,
        result="Max iterations reached",
        tool_calls=records,
        error=f"Exceeded {max_iterations} tool iterations",
    )


class TaskExecutor:
    def __init__(
        self,
        model: BaseChatModel,
        tools: list[BaseTool],
        prompt: PromptConfig,
        scope: DirectoryScope,
        *,
        max_tool_iterations: int | None = None,
    ) -> None:
        self.model = model
        self.tools = tools
        self.prompt = prompt
        self.scope = scope
        self.max_tool_iterations = max_tool_iterations or prompt.max_tool_iterations or 10

    async def execute(
        self,
        task: Task,
        context: str = "",
        *,
        cancel: CancelToken | None = None,
        on_tool: OnToolFn | None = None,
        on_message: OnMessageFn | None = None,
    ) -> ExecutionResult:
        prompt = self.prompt.render(
            task=task.description,
            context=f"Context:\n{context}" if context else "",
            scope=self.scope.rules(),
        )
        result = await run_tool_loop(
            self.model,
            self.tools,
            prompt,
            max_iterations=self.max_tool_iterations,
            cancel=cancel,
            on_tool=on_tool,
            on_message=on_message,
        )
        logger.info(
            "Task %s attempt %d: success=%s tools=%d", task.id, task.attempts, result.success, len(result.tool_calls)
        )
        return result
