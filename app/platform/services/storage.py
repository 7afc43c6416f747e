"""
Blob store for generated reports.

Keys map to objects in one S3 compatible bucket (AWS, MinIO, R2). Readers
get time limited presigned URLs, or plain CDN URLs when ``S3_PUBLIC_URL``
is configured.
"""
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.platform.config import settings
from app.platform.exceptions import TransientInfrastructureError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class BlobStoreError(TransientInfrastructureError):
    code = "BLOB_STORE_UNAVAILABLE"


class S3BlobStore:
    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        force_path_style: bool = False,
        public_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/") if public_url else None
        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
                region_name=region or None,
            )
            client = session.client(
                "s3",
                endpoint_url=endpoint or None,
                config=BotoConfig(s3={"addressing_style": "path" if force_path_style else "auto"}),
            )
        self._client = client

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Failed to upload {key}", cause=e) from e
        logger.info(f"Uploaded {key} ({len(data)} bytes) to bucket {self.bucket}")
        return key

    def presigned_url(self, key: str, expires_in: int) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Failed to presign {key}", cause=e) from e


_blob_store: Optional[S3BlobStore] = None


def get_blob_store() -> S3BlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = S3BlobStore(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            endpoint=settings.S3_ENDPOINT,
            force_path_style=settings.S3_FORCE_PATH_STYLE,
            public_url=settings.S3_PUBLIC_URL,
        )
    return _blob_store
