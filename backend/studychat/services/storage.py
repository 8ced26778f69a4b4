"""S3-compatible object storage for materials and chat attachments."""

import time
from uuid import UUID
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from studychat.config import Settings


class StorageError(Exception):
    """Object storage operation failed."""


class StorageService:
    """Service for interacting with S3-compatible storage buckets."""

    def __init__(self, settings: Settings):
        """Initialize S3 client with credentials from settings."""
        client_kwargs = {
            "aws_access_key_id": settings.storage_access_key_id,
            "aws_secret_access_key": settings.storage_secret_access_key,
            "region_name": settings.storage_region,
        }
        # Supabase Storage, MinIO and LocalStack expose S3 on a custom endpoint
        if settings.storage_endpoint_url:
            client_kwargs["endpoint_url"] = settings.storage_endpoint_url

        self.s3_client = boto3.client("s3", **client_kwargs)
        self.public_base_url = settings.storage_public_base_url.rstrip("/")
        self.max_upload_size_bytes = settings.max_upload_size_bytes
        self.upload_expiration = settings.upload_url_expiration_seconds

    def public_url(self, bucket: str, file_key: str) -> str:
        """
        Deterministic public URL of an object in a public bucket.

        The key is percent-encoded, so the URL is a single token without
        spaces, parentheses or brackets.
        """
        return f"{self.public_base_url}/{quote(bucket, safe='')}/{quote(file_key, safe='/')}"

    @staticmethod
    def chat_upload_key(user_id: UUID, filename: str) -> str:
        """Object key for a chat attachment: ``<user_id>/<millis>.<ext>``."""
        millis = int(time.time() * 1000)
        _, dot, ext = filename.rpartition(".")
        if dot and ext:
            return f"{user_id}/{millis}.{ext.lower()}"
        return f"{user_id}/{millis}"

    async def generate_presigned_upload_url(
        self,
        bucket: str,
        file_key: str,
        content_type: str,
    ) -> dict:
        """
        Generate presigned POST data for direct upload from the client.

        Args:
            bucket: Target bucket
            file_key: Object key (path) for the file
            content_type: MIME type of the file

        Returns:
            Dictionary with presigned POST data including url and fields

        Raises:
            StorageError: If the S3 operation fails
        """
        try:
            return self.s3_client.generate_presigned_post(
                bucket,
                file_key,
                Fields={"Content-Type": content_type},
                Conditions=[
                    {"Content-Type": content_type},
                    ["content-length-range", 1, self.max_upload_size_bytes],
                ],
                ExpiresIn=self.upload_expiration,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to generate presigned URL: {str(e)}") from e
