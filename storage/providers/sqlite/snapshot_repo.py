"""SQLite repository for snapshot metadata."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from storage.models import SnapshotRow


class SQLiteSnapshotRepo:
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

    def create(self, row: SnapshotRow) -> SnapshotRow:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO project_snapshots (id, project_id, storage_key, size_bytes, snapshot_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (row.id, row.project_id, row.storage_key, row.size_bytes, row.snapshot_type, row.created_at),
            )
            self._conn.commit()
        return row

    def latest(self, project_id: str) -> SnapshotRow | None:
        rows = self._select(project_id, limit=1)
        return rows[0] if rows else None

    def list_by_project(self, project_id: str) -> list[SnapshotRow]:
        return self._select(project_id)

    def count(self, project_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM project_snapshots WHERE project_id = ?",
                (project_id,),
            ).fetchone()
        return int(row[0]) if row else 0

    def _select(self, project_id: str, limit: int = -1) -> list[SnapshotRow]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, project_id, storage_key, size_bytes, snapshot_type, created_at
                FROM project_snapshots
                WHERE project_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (project_id, limit),
            ).fetchall()
        return [
            SnapshotRow(
                id=r[0],
                project_id=r[1],
                storage_key=r[2],
                size_bytes=int(r[3]),
                snapshot_type=r[4],
                created_at=float(r[5]),
            )
            for r in rows
        ]

    def _ensure_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS project_snapshots (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    storage_key TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    snapshot_type TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_project_snapshots_project
                ON project_snapshots (project_id, created_at)
                """
            )
            self._conn.commit()
