"""Rolling context fed to the planner from earlier turns of a project."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from storage.models import ConversationTurnRow

RESULT_PREVIEW = 100
RULE = "=" * 60


@dataclass
class TaskHistory:
    completed: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    pending: list[dict[str, Any]] = field(default_factory=list)
    summary: str = ""


def build_task_history(turns: list[ConversationTurnRow]) -> TaskHistory:
    history = TaskHistory()
    for turn in turns:
        graph = turn.task_graph or {}
        tasks = graph.get("tasks")
        if not isinstance(tasks, list):
            continue
        for task in tasks:
            status = task.get("status")
            if status == "completed":
                history.completed.append(task)
            elif status == "failed":
                history.failed.append(task)
            elif status in {"pending", "in_progress", "verifying", "fixing"}:
                history.pending.append(task)

    if not (history.completed or history.failed or history.pending):
        return history

    lines = [RULE, "TASK HISTORY FOR THIS PROJECT:", RULE, ""]
    if history.completed:
        lines.append(f"COMPLETED TASKS ({len(history.completed)}):")
        for i, task in enumerate(history.completed, 1):
            lines.append(f"{i}. {task.get('description', '')}")
            result = task.get("result")
            if result:
                more = "..." if len(result) > RESULT_PREVIEW else ""
                lines.append(f"   Result: {result[:RESULT_PREVIEW]}{more}")
        lines.append("")
    if history.failed:
        lines.append(f"FAILED TASKS ({len(history.failed)}):")
        for i, task in enumerate(history.failed, 1):
            lines.append(f"{i}. {task.get('description', '')}")
            if task.get("error"):
                lines.append(f"   Error: {task['error']}")
        lines.append("")
    if history.pending:
        lines.append(f"PENDING TASKS ({len(history.pending)}):")
        for i, task in enumerate(history.pending, 1):
            lines.append(f"{i}. {task.get('description', '')}")
        lines.append("")
    lines += [
        RULE,
        "Use this task history to understand what has already been done and what remains.",
        "Avoid redoing completed tasks unless explicitly requested.",
        RULE,
    ]
    history.summary = "\n".join(lines)
    return history


def format_conversation(turns: list[ConversationTurnRow], preview: int = 500) -> str:
    """Recent turns as plain text for the planner context."""
    lines = []
    for turn in turns:
        content = turn.content if len(turn.content) <= preview else turn.content[:preview] + "..."
        lines.append(f"{turn.role.upper()}: {content}")
    return "\n".join(lines)
