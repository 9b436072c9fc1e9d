"""Task graph orchestration: planner, executor, verifier, fixer over a project sandbox."""

from core.task.history import TaskHistory, build_task_history
from core.task.orchestrator import TaskOrchestrator
from core.task.session_cache import SessionCache, session_key
from core.task.store import TaskStore
from core.task.types import ExecutionResult, Task, TaskStatus, ToolCall, VerificationResult

__all__ = [
    "ExecutionResult",
    "SessionCache",
    "Task",
    "TaskHistory",
    "TaskOrchestrator",
    "TaskStatus",
    "TaskStore",
    "ToolCall",
    "VerificationResult",
    "build_task_history",
    "session_key",
]
