"""In-memory task graph for one instruction."""

from __future__ import annotations

from typing import Any

from core.task.types import TERMINAL_STATUSES, Task, TaskStatus, assert_task_transition


class TaskStore:
    def __init__(self, tasks: list[Task] | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        for task in tasks or []:
            self.add(task)

    def add(self, task: Task) -> None:
        if task.id in self._tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task

    def get(self, task_id: str) -> Task:
        return self._tasks[task_id]

    def all(self) -> list[Task]:
        return list(self._tasks.values())

    def by_status(self, *statuses: TaskStatus) -> list[Task]:
        return [t for t in self._tasks.values() if t.status in statuses]

    def root_ids(self) -> list[str]:
        return [t.id for t in self._tasks.values() if not t.dependencies]

    def next_executable(self) -> Task | None:
        """A pending task whose dependencies are all completed."""
        for task in self._tasks.values():
            if task.status != TaskStatus.PENDING:
                continue
            deps = [self._tasks.get(dep_id) for dep_id in task.dependencies]
            if all(dep is not None and dep.status == TaskStatus.COMPLETED for dep in deps):
                return task
        return None

    def all_terminal(self) -> bool:
        return all(t.status in TERMINAL_STATUSES for t in self._tasks.values())

    def transition(self, task_id: str, target: TaskStatus, *, reason: str = "") -> Task:
        task = self._tasks[task_id]
        assert_task_transition(task.status, target, reason=reason or task_id)
        task.status = target
        if target == TaskStatus.IN_PROGRESS:
            task.attempts += 1
        return task

    def mark_failed(self, task_id: str, error: str) -> Task:
        task = self.transition(task_id, TaskStatus.FAILED, reason=error)
        task.error = error
        return task

    def fail_remaining(self, error: str, *, statuses: tuple[TaskStatus, ...] | None = None) -> list[Task]:
        """Fail every non-terminal task (or only those in ``statuses``)."""
        targets = [
            t for t in self._tasks.values()
            if t.status not in TERMINAL_STATUSES and (statuses is None or t.status in statuses)
        ]
        for task in targets:
            self.mark_failed(task.id, error)
        return targets

    def summary(self) -> dict[str, int]:
        tasks = self._tasks.values()
        return {
            "total": len(self._tasks),
            "completed": sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
            "failed": sum(1 for t in tasks if t.status == TaskStatus.FAILED),
            "pending": sum(1 for t in tasks if t.status == TaskStatus.PENDING),
            "inProgress": sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
        }

    def to_graph(self) -> dict[str, Any]:
        return {"tasks": [t.to_detail() for t in self._tasks.values()], "rootTaskIds": self.root_ids()}
