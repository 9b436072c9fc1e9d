"""S3-compatible blob store (AWS S3, Cloudflare R2, MinIO) via boto3."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError

from config.schema import BlobConfig
from storage.errors import BlobNotFoundError, BlobStoreError

logger = logging.getLogger(__name__)


class S3BlobStore:
    def __init__(self, config: BlobConfig, client: Any | None = None) -> None:
        self.config = config
        self.bucket = config.bucket
        if client is not None:
            self._client = client
        else:
            session = boto3.Session(
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                region_name=config.region,
            )
            self._client = session.client("s3", endpoint_url=config.endpoint_url)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except ClientError as e:
            raise BlobStoreError(f"Failed to upload {key}: {e}") from e
        logger.debug("Uploaded s3://%s/%s (%d bytes)", self.bucket, key, len(data))
        return key

    def get(self, key: str) -> bytes:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in {"NoSuchKey", "404"}:
                raise BlobNotFoundError(key) from e
            raise BlobStoreError(f"Failed to download {key}: {e}") from e
        return obj["Body"].read()

    def public_url(self, key: str) -> str:
        base = self.config.public_url.rstrip("/")
        if not base:
            raise BlobStoreError("blob.public_url is not configured")
        return f"{base}/{key.lstrip('/')}"
