from storage.providers.s3.blob_store import S3BlobStore

__all__ = ["S3BlobStore"]
