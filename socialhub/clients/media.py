"""
MinIO (S3-compatible) media store.

Stores image bytes as objects and hands back stable public URLs. boto3 is
blocking, so every call runs in a worker thread.

  upload(content_base64, content_type) -> url     (UpstreamFailure on error)
  delete(url | urls)                   -> bool    (False on error, logged)
"""
import asyncio
import base64
import binascii
import logging
import uuid
from io import BytesIO
from typing import Iterable, Union

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from socialhub.config import settings
from socialhub.errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def _split_data_url(content: str) -> tuple[str, str]:
    """Accept either raw base64 or a data:<type>;base64,<payload> URL."""
    if content.startswith("data:") and "," in content:
        header, payload = content.split(",", 1)
        content_type = header[5:].split(";", 1)[0] or "image/jpeg"
        return content_type, payload
    return "image/jpeg", content


class MediaStore:
    def __init__(self) -> None:
        self._s3 = None

    def init(self) -> None:
        """Create the S3 client and ensure the media bucket exists."""
        scheme = "https" if settings.minio_use_ssl else "http"
        self._s3 = boto3.client(
            "s3",
            endpoint_url=f"{scheme}://{settings.minio_endpoint}",
            aws_access_key_id=settings.minio_access_key,
            aws_secret_access_key=settings.minio_secret_key,
            config=Config(signature_version="s3v4"),
            region_name="us-east-1",
        )

        existing = [b["Name"] for b in self._s3.list_buckets().get("Buckets", [])]
        if settings.minio_bucket not in existing:
            self._s3.create_bucket(Bucket=settings.minio_bucket)
            logger.info("Created MinIO bucket '%s'", settings.minio_bucket)
        else:
            logger.info("MinIO bucket '%s' already exists", settings.minio_bucket)

    @property
    def s3(self):
        if self._s3 is None:
            raise RuntimeError("Media store not initialised — call init() at startup")
        return self._s3

    def url_for(self, key: str) -> str:
        return f"{settings.media_public_url.rstrip('/')}/{settings.minio_bucket}/{key}"

    def key_for(self, url: str) -> str:
        prefix = f"{settings.media_public_url.rstrip('/')}/{settings.minio_bucket}/"
        return url[len(prefix):] if url.startswith(prefix) else url.rsplit("/", 1)[-1]

    def _put(self, content: str) -> str:
        content_type, payload = _split_data_url(content)
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Media payload is not valid base64") from exc

        key = f"images/{uuid.uuid4()}.{_EXTENSIONS.get(content_type, 'bin')}"
        self.s3.put_object(
            Bucket=settings.minio_bucket,
            Key=key,
            Body=BytesIO(data),
            ContentType=content_type,
        )
        logger.debug("Uploaded media to MinIO: %s", key)
        return self.url_for(key)

    async def upload(self, content: str) -> str:
        try:
            return await asyncio.to_thread(self._put, content)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Media upload failed: %s", exc)
            raise UpstreamFailure("Failed to upload media") from exc

    async def upload_many(self, contents: Iterable[str]) -> list[str]:
        return [await self.upload(content) for content in contents]

    async def delete(self, urls: Union[str, Iterable[str]]) -> bool:
        if isinstance(urls, str):
            urls = [urls]
        keys = [self.key_for(url) for url in urls if url]
        try:
            for key in keys:
                await asyncio.to_thread(self.s3.delete_object, Bucket=settings.minio_bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to delete media %s: %s", keys, exc)
            return False
        return True
