from .container import StorageContainer
from .contracts import BlobStore, ConversationRepo, ProjectRepo, SnapshotRepo
from .errors import BlobNotFoundError, BlobStoreError
from .models import ConversationTurnRow, ProjectRow, SnapshotRow

__all__ = [
    "StorageContainer",
    "ProjectRepo",
    "SnapshotRepo",
    "ConversationRepo",
    "BlobStore",
    "BlobStoreError",
    "BlobNotFoundError",
    "ProjectRow",
    "SnapshotRow",
    "ConversationTurnRow",
]
