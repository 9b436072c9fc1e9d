"""Type definitions for the task graph."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFYING = "verifying"
    FIXING = "fixing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.FAILED}),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.VERIFYING, TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.FAILED}
    ),
    TaskStatus.VERIFYING: frozenset(
        {TaskStatus.FIXING, TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.FAILED}
    ),
    TaskStatus.FIXING: frozenset({TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def assert_task_transition(current: TaskStatus, target: TaskStatus, *, reason: str = "") -> None:
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise RuntimeError(f"Illegal task transition: {current} -> {target} ({reason})")


class ToolCall(BaseModel):
    """One tool invocation made while executing or fixing a task."""

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "args": self.args, "result": self.result}


class ExecutionResult(BaseModel):
    success: bool
    result: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    error: str | None = None


class VerificationResult(BaseModel):
    is_correct: bool
    feedback: str = ""
    confidence: int = 50


class Task(BaseModel):
    """One unit of agent work within a single instruction."""

    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    result: str | None = None
    error: str | None = None
    attempts: int = 0
    max_attempts: int = 3
    tool_calls: list[ToolCall] = Field(default_factory=list)
    verification: VerificationResult | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_summary(self) -> dict[str, str]:
        return {"id": self.id, "description": self.description}

    def to_detail(self) -> dict[str, Any]:
        """Serialized form stored with the assistant turn's task graph."""
        detail: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "dependencies": self.dependencies,
            "result": self.result,
            "error": self.error,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls],
        }
        if self.verification is not None:
            detail["verification"] = {
                "isCorrect": self.verification.is_correct,
                "feedback": self.verification.feedback,
                "confidence": self.verification.confidence,
            }
        return detail
