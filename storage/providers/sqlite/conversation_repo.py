"""SQLite repository for per-project conversation turns."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from storage.models import ConversationTurnRow


def _dump(value: Any) -> str | None:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


def _load(value: str | None) -> Any:
    return json.loads(value) if value else None


class SQLiteConversationRepo:
    def __init__(
        self,
        db_path: str | Path | None = None,
        conn: sqlite3.Connection | None = None,
        lock: threading.Lock | None = None,
    ) -> None:
        self._own_conn = conn is None
        if conn is not None:
            self._conn = conn
        else:
            if db_path is None:
                db_path = Path.home() / ".hitbox" / "hitbox.db"
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._lock = lock or threading.Lock()
        self._ensure_table()

    def close(self) -> None:
        if self._own_conn:
            self._conn.close()

    def append(self, row: ConversationTurnRow) -> ConversationTurnRow:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO conversation_turns
                    (id, project_id, role, content, tool_calls, file_diffs, task_graph, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row.id,
                    row.project_id,
                    row.role,
                    row.content,
                    _dump(row.tool_calls),
                    _dump(row.file_diffs),
                    _dump(row.task_graph),
                    _dump(row.metadata or {}),
                    row.created_at,
                ),
            )
            self._conn.commit()
        return row

    def list_by_project(self, project_id: str, *, last: int | None = None) -> list[ConversationTurnRow]:
        """Turns oldest first; ``last`` keeps only the most recent N."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, project_id, role, content, tool_calls, file_diffs, task_graph, metadata, created_at
                FROM conversation_turns
                WHERE project_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (project_id, last if last is not None else -1),
            ).fetchall()
        turns = [
            ConversationTurnRow(
                id=r[0],
                project_id=r[1],
                role=r[2],
                content=r[3],
                tool_calls=_load(r[4]),
                file_diffs=_load(r[5]),
                task_graph=_load(r[6]),
                metadata=_load(r[7]) or {},
                created_at=float(r[8]),
            )
            for r in rows
        ]
        turns.reverse()
        return turns

    def _ensure_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversation_turns (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    tool_calls TEXT,
                    file_diffs TEXT,
                    task_graph TEXT,
                    metadata TEXT,
                    created_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_conversation_turns_project
                ON conversation_turns (project_id, created_at)
                """
            )
            self._conn.commit()
