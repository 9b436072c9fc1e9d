"""Directory-backed blob store for local mode."""

from __future__ import annotations

from pathlib import Path

from config.schema import BlobConfig
from storage.errors import BlobNotFoundError, BlobStoreError


class FilesystemBlobStore:
    def __init__(self, config: BlobConfig) -> None:
        self.config = config
        self.root = Path(config.root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if not path.is_relative_to(self.root):
            raise BlobStoreError(f"Blob key escapes store root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return path.read_bytes()

    def public_url(self, key: str) -> str:
        base = self.config.public_url.rstrip("/")
        if base:
            return f"{base}/{key.lstrip('/')}"
        return self._path(key).as_uri()
