"""Blob storage for original documents and derived assets."""

import logging
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from papercrate.config import Settings
from papercrate.errors import StorageError

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Interface implemented by blob store backends."""

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    def get_object(self, key: str) -> bytes:
        raise NotImplementedError

    def delete_object(self, key: str) -> None:
        raise NotImplementedError

    def presign_get_object(self, key: str, expires_in: int) -> str:
        raise NotImplementedError


class S3Storage(ObjectStorage):
    """S3 compatible storage backed by boto3."""

    def __init__(self, client, bucket: str):
        """Initialize with a boto3 S3 client and bucket name."""
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Storage":
        """Build a client honouring custom endpoints and static credentials."""
        client = boto3.client(
            "s3",
            endpoint_url=settings.AWS_ENDPOINT_URL,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.AWS_REGION,
            config=BotoConfig(s3={"addressing_style": "path"}),
        )
        return cls(client, settings.S3_BUCKET)

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> None:
        """Upload bytes under ``key``."""
        params = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if content_disposition:
            params["ContentDisposition"] = content_disposition

        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to upload object {key}: {e}") from e

    def get_object(self, key: str) -> bytes:
        """Download the full object body."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to download object {key}: {e}") from e

    def delete_object(self, key: str) -> None:
        """Delete an object; missing keys are not an error on S3."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to delete object {key}: {e}") from e

    def presign_get_object(self, key: str, expires_in: int) -> str:
        """Generate a time-limited download URL."""
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"failed to presign object {key}: {e}") from e
