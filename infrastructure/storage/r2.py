import asyncio
import logging
import os
import random
import time
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from domain.message.types import ContentKind

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 10 * 1024 * 1024
MAX_VOICE_BYTES = 5 * 1024 * 1024

FILE_FORMATS = {"jpg", "jpeg", "png", "gif", "webp", "pdf", "doc", "docx", "txt"}
IMAGE_FORMATS = {"jpg", "jpeg", "png", "gif", "webp"}
VOICE_FORMATS = {"mp3", "wav", "ogg", "m4a", "webm", "aac"}


class BlobValidationError(ValueError):
    """Upload rejected before it reached the bucket."""


class BlobStoreError(RuntimeError):
    """The bucket refused or failed the operation."""


class R2Service:
    """Blob store on Cloudflare R2. The broker only keeps the returned descriptor."""

    def __init__(self, account_id: str, access_key: str, secret_key: str, bucket_name: str,
                 public_url: Optional[str] = None):
        self.bucket_name = bucket_name
        self.endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"
        self.public_url = (public_url or f"{self.endpoint_url}/{bucket_name}").rstrip("/")

        self.s3_client = boto3.client(
            service_name="s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
            region_name="auto"
        )

    async def store(self, body: bytes, kind: ContentKind, filename: str, content_type: str,
                    duration: float = 0) -> dict:
        """Validates and uploads; returns ``{url, name, size, mime, format, public_id}``."""
        extension = self._validate(body, kind, filename)
        folder = "voice" if kind is ContentKind.VOICE else "files"
        public_id = f"{folder}/{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        key = f"{public_id}.{extension}"

        await asyncio.to_thread(self._upload, body, key, content_type)
        descriptor = {
            "url": f"{self.public_url}/{key}",
            "name": filename,
            "size": len(body),
            "mime": content_type,
            "format": extension,
            "public_id": key,
        }
        if kind is ContentKind.VOICE:
            descriptor["duration"] = duration
        logger.info("Stored %s upload %s (%d bytes)", kind.value, key, len(body))
        return descriptor

    async def delete(self, public_id: str) -> None:
        try:
            await asyncio.to_thread(self.s3_client.delete_object, Bucket=self.bucket_name, Key=public_id)
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Could not delete {public_id}: {e}") from e

    @staticmethod
    def limit_for(kind: ContentKind) -> int:
        return MAX_VOICE_BYTES if kind is ContentKind.VOICE else MAX_FILE_BYTES

    def _validate(self, body: bytes, kind: ContentKind, filename: str) -> str:
        if not body:
            raise BlobValidationError("No file uploaded")
        extension = os.path.splitext(filename or "")[1].lstrip(".").lower()
        if kind is ContentKind.VOICE:
            allowed = VOICE_FORMATS
        elif kind is ContentKind.IMAGE:
            allowed = IMAGE_FORMATS
        else:
            allowed = FILE_FORMATS
        limit = self.limit_for(kind)
        if extension not in allowed:
            raise BlobValidationError(f"Format .{extension or '?'} is not allowed for {kind.value}")
        if len(body) > limit:
            raise BlobValidationError(f"File exceeds {limit // (1024 * 1024)}MB limit")
        return extension

    def _upload(self, body, key, content_type):
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=body,
                ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Upload of {key} failed: {e}") from e
