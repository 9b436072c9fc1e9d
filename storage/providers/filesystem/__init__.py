from storage.providers.filesystem.blob_store import FilesystemBlobStore

__all__ = ["FilesystemBlobStore"]
