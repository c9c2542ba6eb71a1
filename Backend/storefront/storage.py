"""
Object storage for store images.

Store covers, category images and product images live in one
S3-compatible bucket (STORAGE_BUCKET). Keys are grouped by folder:

    store_covers/<user_id>-cover-image-<ms>.<ext>
    category_images/<user_id>-category-<ms>.<ext>
    product_images/<user_id>-product-<ms>.<ext>

Usage:
    storage = get_storage()
    url = await store_image(storage, user_id, "store_covers", "cover-image", data)
"""

import logging
import time
from functools import lru_cache
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool

from .core.config import get_settings
from .images import ImageProcessingError, compress_image

logger = logging.getLogger(__name__)

STORE_COVERS_FOLDER = "store_covers"
CATEGORY_IMAGES_FOLDER = "category_images"
PRODUCT_IMAGES_FOLDER = "product_images"


class StorageError(Exception):
    """Raised when the bucket rejects an upload or delete."""


class ObjectStorage:
    """Thin wrapper around a boto3 S3 client bound to one bucket."""

    def __init__(
        self,
        client,
        bucket: str,
        public_base_url: str = "",
        endpoint_url: str = "",
        region: str = "us-east-1",
    ):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.endpoint_url = endpoint_url.rstrip("/")
        self.region = region

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        """Recover the object key from a public URL this storage produced."""
        if not url:
            return None
        base = url.split("?", 1)[0]
        for prefix in (
            f"{self.public_base_url}/" if self.public_base_url else None,
            f"{self.endpoint_url}/{self.bucket}/" if self.endpoint_url else None,
            f"https://{self.bucket}.s3.{self.region}.amazonaws.com/",
        ):
            if prefix and base.startswith(prefix):
                return base[len(prefix):]
        return None

    async def upload(
        self,
        key: str,
        content: bytes,
        content_type: str,
        cache_control: str = "max-age=3600",
    ) -> str:
        """Upload bytes and return the public URL."""
        try:
            await run_in_threadpool(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
                CacheControl=cache_control,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Upload of {key} failed: {e}")
            raise StorageError(str(e)) from e

        logger.info(f"☁️ Uploaded {key} ({len(content)} bytes)")
        return self.public_url(key)

    async def remove(self, keys: Iterable[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            return
        try:
            await run_in_threadpool(
                self.client.delete_objects,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Delete of {keys} failed: {e}")
            raise StorageError(str(e)) from e
        logger.info(f"🗑️ Removed {len(keys)} object(s) from {self.bucket}")


@lru_cache
def get_storage() -> ObjectStorage:
    """FastAPI dependency returning the configured bucket."""
    settings = get_settings()
    client = boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url or None,
        aws_access_key_id=settings.storage_access_key_id or None,
        aws_secret_access_key=settings.storage_secret_access_key or None,
        region_name=settings.storage_region,
    )
    return ObjectStorage(
        client,
        bucket=settings.storage_bucket,
        public_base_url=settings.storage_public_base_url,
        endpoint_url=settings.storage_endpoint_url,
        region=settings.storage_region,
    )


def build_object_key(folder: str, user_id: str, label: str, extension: str) -> str:
    timestamp_ms = int(time.time() * 1000)
    return f"{folder}/{user_id}-{label}-{timestamp_ms}.{extension}"


async def store_image(
    storage: ObjectStorage,
    user_id: str,
    folder: str,
    label: str,
    data: bytes,
) -> str:
    """
    Compress an uploaded image and put it in the bucket.

    Returns:
        Public URL of the stored object

    Raises:
        HTTPException 422: If the upload is not a usable image
        HTTPException 502: If the bucket rejects the upload
    """
    try:
        image = await run_in_threadpool(compress_image, data)
    except ImageProcessingError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    key = build_object_key(folder, user_id, label, image.extension)
    try:
        return await storage.upload(key, image.content, image.content_type)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Upload failed: {e}")
