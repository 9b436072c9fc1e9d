from storage.providers.sqlite.conversation_repo import SQLiteConversationRepo
from storage.providers.sqlite.project_repo import SQLiteProjectRepo
from storage.providers.sqlite.snapshot_repo import SQLiteSnapshotRepo

__all__ = [
    "SQLiteProjectRepo",
    "SQLiteSnapshotRepo",
    "SQLiteConversationRepo",
]
