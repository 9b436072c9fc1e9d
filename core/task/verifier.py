"""Verification capability. A broken verifier never blocks progress."""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from config.types import PromptConfig
from core.task.llm import format_tool_calls, message_text, parse_json_object
from core.task.scope import DirectoryScope
from core.task.types import ExecutionResult, Task, VerificationResult
from sandbox.cancel import CancelToken
from sandbox.errors import CancelledRunError

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 50
FALLBACK_CONFIDENCE = 30


def parse_verification(text: str) -> VerificationResult:
    data = parse_json_object(text)
    is_correct = data.get("isCorrect")
    if not isinstance(is_correct, bool):
        raise ValueError("isCorrect must be a boolean")
    confidence = data.get("confidence")
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool) or not confidence:
        confidence = DEFAULT_CONFIDENCE
    return VerificationResult(
        is_correct=is_correct,
        feedback=str(data.get("feedback") or ""),
        confidence=max(0, min(100, int(confidence))),
    )


class ResultVerifier:
    def __init__(self, model: BaseChatModel, prompt: PromptConfig, scope: DirectoryScope) -> None:
        self.model = model
        self.prompt = prompt
        self.scope = scope

    async def verify(
        self,
        task: Task,
        execution: ExecutionResult,
        context: str = "",
        *,
        cancel: CancelToken | None = None,
    ) -> VerificationResult:
        if cancel is not None:
            cancel.raise_if_cancelled()
        prompt = self.prompt.render(
            task=task.description,
            result=execution.result,
            tool_calls=format_tool_calls(execution.tool_calls),
            context=f"Context:\n{context}" if context else "",
            scope=self.scope.rules(),
        )
        try:
            response = await self.model.ainvoke([HumanMessage(content=prompt)])
            return parse_verification(message_text(response))
        except CancelledRunError:
            raise
        except Exception as e:
            logger.warning("Verification of %s unusable, treating as correct: %s", task.id, e)
            return VerificationResult(
                is_correct=True,
                feedback="Task appears to have completed successfully (default verification)",
                confidence=FALLBACK_CONFIDENCE,
            )
