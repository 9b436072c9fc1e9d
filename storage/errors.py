class BlobStoreError(RuntimeError):
    pass


class BlobNotFoundError(BlobStoreError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Blob not found: {key}")
        self.key = key
