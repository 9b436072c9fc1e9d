"""SQLite repository for project records."""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from storage.models import ProjectRow

_COLUMNS = (
    "id",
    "user_id",
    "name",
    "description",
    "game_type",
    "template",
    "status",
    "workload_name",
    "preview_url",
    "deployment_url",
    "build_status",
    "created_at",
    "last_activity_at",
    "deleted_at",
)
_UPDATABLE = frozenset(_COLUMNS) - {"id", "user_id", "created_at"}
_ACTIVE = ("initializing", "building", "ready")


class SQLiteProjectRepo:
    """Project rows; deleted rows stay in the table with ``deleted_at`` set."""

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

    def create(self, row: ProjectRow) -> ProjectRow:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        values = tuple(getattr(row, col) for col in _COLUMNS)
        with self._lock:
            self._conn.execute(
                f"INSERT INTO projects ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            self._conn.commit()
        return row

    def get(self, project_id: str, user_id: str | None = None, *, include_deleted: bool = False) -> ProjectRow | None:
        sql = f"SELECT {', '.join(_COLUMNS)} FROM projects WHERE id = ?"
        params: list[Any] = [project_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return self._to_row(row) if row else None

    def list_by_user(self, user_id: str) -> list[ProjectRow]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {', '.join(_COLUMNS)}
                FROM projects
                WHERE user_id = ? AND deleted_at IS NULL
                ORDER BY last_activity_at DESC, created_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [self._to_row(r) for r in rows]

    def list_active_by_user(self, user_id: str) -> list[ProjectRow]:
        placeholders = ", ".join("?" for _ in _ACTIVE)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {', '.join(_COLUMNS)}
                FROM projects
                WHERE user_id = ? AND deleted_at IS NULL AND status IN ({placeholders})
                ORDER BY last_activity_at DESC
                """,
                (user_id, *_ACTIVE),
            ).fetchall()
        return [self._to_row(r) for r in rows]

    def list_idle(self, cutoff: float) -> list[ProjectRow]:
        """Active projects whose last activity is older than ``cutoff``."""
        placeholders = ", ".join("?" for _ in _ACTIVE)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {', '.join(_COLUMNS)}
                FROM projects
                WHERE deleted_at IS NULL AND status IN ({placeholders}) AND last_activity_at < ?
                ORDER BY last_activity_at ASC
                """,
                (*_ACTIVE, cutoff),
            ).fetchall()
        return [self._to_row(r) for r in rows]

    def update_fields(self, project_id: str, **fields: Any) -> None:
        if not fields:
            return
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        # @@@column-whitelist - column names come from _UPDATABLE only; values stay parameterized.
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self._lock:
            self._conn.execute(
                f"UPDATE projects SET {assignments} WHERE id = ?",
                (*fields.values(), project_id),
            )
            self._conn.commit()

    def touch(self, project_id: str, at: float | None = None) -> None:
        self.update_fields(project_id, last_activity_at=at if at is not None else time.time())

    def soft_delete(self, project_id: str, at: float | None = None) -> None:
        self.update_fields(project_id, deleted_at=at if at is not None else time.time())

    @staticmethod
    def _to_row(row: tuple) -> ProjectRow:
        return ProjectRow(**dict(zip(_COLUMNS, row)))

    def _ensure_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    game_type TEXT NOT NULL DEFAULT '3d',
                    template TEXT,
                    status TEXT NOT NULL,
                    workload_name TEXT NOT NULL,
                    preview_url TEXT NOT NULL,
                    deployment_url TEXT,
                    build_status TEXT NOT NULL DEFAULT 'none',
                    created_at REAL NOT NULL,
                    last_activity_at REAL NOT NULL,
                    deleted_at REAL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_projects_user
                ON projects (user_id, deleted_at, status)
                """
            )
            self._conn.commit()
