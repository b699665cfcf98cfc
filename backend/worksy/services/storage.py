"""S3-compatible blob storage for uploaded AI Index documents."""

import logging

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from worksy.config import settings
from worksy.services.errors import UpstreamError

logger = logging.getLogger(__name__)


class IndexStorage:
    """Thin client around boto3 S3 for put & presign operations."""

    def __init__(self, client=None, bucket: str | None = None):
        self.bucket = bucket or settings.s3_bucket
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint,
                aws_access_key_id=settings.s3_access_key or None,
                aws_secret_access_key=settings.s3_secret_key or None,
                config=BotoConfig(signature_version="s3v4"),
                region_name=settings.s3_region,
            )
        return self._client

    def upload(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        """Upload bytes under ``key``, overwriting any existing object."""
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s to bucket %s failed: %s", key, self.bucket, exc)
            raise UpstreamError("Upload failed") from exc
        return key

    def signed_url(self, key: str, expires: int | None = None) -> str | None:
        """Time-limited GET URL for an object, or None if signing fails."""
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires or settings.index_url_expiry_s,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Could not sign URL for %s: %s", key, exc)
            return None
