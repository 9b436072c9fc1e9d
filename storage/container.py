"""Storage container: one sqlite connection shared by all repos, plus the blob store."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from config.schema import HITBOX_HOME, BlobConfig

from .contracts import BlobStore, ConversationRepo, ProjectRepo, SnapshotRepo


class StorageContainer:
    """Composition root for storage repos."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        blob_config: BlobConfig | None = None,
        blob_store: BlobStore | None = None,
    ) -> None:
        self._db_path = Path(db_path) if db_path else HITBOX_HOME / "hitbox.db"
        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        # @@@shared-conn-lock - repos share one connection, so they share one lock too.
        self._lock = threading.Lock()
        self._blob_config = blob_config or BlobConfig()
        self._blob_store = blob_store
        self._projects: ProjectRepo | None = None
        self._snapshots: SnapshotRepo | None = None
        self._conversations: ConversationRepo | None = None

    def project_repo(self) -> ProjectRepo:
        if self._projects is None:
            from storage.providers.sqlite.project_repo import SQLiteProjectRepo

            self._projects = SQLiteProjectRepo(conn=self._conn, lock=self._lock)
        return self._projects

    def snapshot_repo(self) -> SnapshotRepo:
        if self._snapshots is None:
            from storage.providers.sqlite.snapshot_repo import SQLiteSnapshotRepo

            self._snapshots = SQLiteSnapshotRepo(conn=self._conn, lock=self._lock)
        return self._snapshots

    def conversation_repo(self) -> ConversationRepo:
        if self._conversations is None:
            from storage.providers.sqlite.conversation_repo import SQLiteConversationRepo

            self._conversations = SQLiteConversationRepo(conn=self._conn, lock=self._lock)
        return self._conversations

    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            if self._blob_config.backend == "filesystem":
                from storage.providers.filesystem.blob_store import FilesystemBlobStore

                self._blob_store = FilesystemBlobStore(self._blob_config)
            else:
                from storage.providers.s3.blob_store import S3BlobStore

                self._blob_store = S3BlobStore(self._blob_config)
        return self._blob_store

    def close(self) -> None:
        self._conn.close()
