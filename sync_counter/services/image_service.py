"""S3-compatible storage for counter images."""

import logging
import uuid

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from sync_counter.core.config import settings

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


class ImageService:
    def __init__(self):
        self._client = None
        self.bucket = settings.IMAGE_STORAGE_BUCKET
        self.max_bytes = settings.IMAGE_MAX_BYTES

    @property
    def client(self):
        if self._client is None:
            kwargs = {
                "service_name": "s3",
                "region_name": settings.IMAGE_STORAGE_REGION,
                "config": BotoConfig(signature_version="s3v4"),
            }
            if settings.IMAGE_STORAGE_ACCESS_KEY:
                kwargs["aws_access_key_id"] = settings.IMAGE_STORAGE_ACCESS_KEY
                kwargs["aws_secret_access_key"] = settings.IMAGE_STORAGE_SECRET_KEY
            if settings.IMAGE_STORAGE_ENDPOINT:
                kwargs["endpoint_url"] = settings.IMAGE_STORAGE_ENDPOINT
            self._client = boto3.client(**kwargs)
        return self._client

    def build_key(self, counter_id: str, content_type: str) -> str:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "bin")
        return f"counters/{counter_id}/{uuid.uuid4().hex}.{ext}"

    def public_url(self, key: str) -> str:
        if settings.IMAGE_PUBLIC_BASE_URL:
            return f"{settings.IMAGE_PUBLIC_BASE_URL.rstrip('/')}/{key}"
        if settings.IMAGE_STORAGE_ENDPOINT:
            return f"{settings.IMAGE_STORAGE_ENDPOINT.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{settings.IMAGE_STORAGE_REGION}.amazonaws.com/{key}"

    def upload(self, counter_id: str, data: bytes, content_type: str) -> tuple[str, str]:
        """Store ``data`` and return ``(key, public_url)``."""
        key = self.build_key(counter_id, content_type)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.info("Stored image %s (%s bytes)", key, len(data))
        return key, self.public_url(key)

    def delete(self, key: str | None) -> None:
        """Remove a stored image. Failures are logged, the caller carries on."""
        if not key:
            return
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("Could not delete image %s: %s", key, e)

    def ensure_bucket(self):
        """Create the bucket if it does not exist (useful for dev with MinIO)."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except Exception:
            try:
                self.client.create_bucket(Bucket=self.bucket)
                logger.info("Created bucket: %s", self.bucket)
            except Exception as e:
                logger.warning("Could not create bucket %s: %s", self.bucket, e)


image_service = ImageService()
