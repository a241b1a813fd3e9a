import asyncio
import logging
import secrets
import string
import time
from typing import Optional, Protocol

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.environment import (
    get_download_timeout,
    get_signed_url_ttl,
    get_storage_endpoint,
    get_storage_region,
)
from services.exceptions import BlobDeleteError, BlobDownloadError, BlobUploadError, SignedUrlError
from services.mime_types import extension_of

logger = logging.getLogger(__name__)

_PATH_ALPHABET = string.ascii_lowercase + string.digits


def new_storage_path(owner_id, file_name: str, now_ms: Optional[int] = None) -> str:
    """<owner>/<epoch millis>-<6 random chars>.<ext>"""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    token = "".join(secrets.choice(_PATH_ALPHABET) for _ in range(6))
    ext = extension_of(file_name) or "bin"
    return f"{owner_id}/{millis}-{token}.{ext}"


class BlobStorage(Protocol):
    async def create_signed_url(self, bucket: str, path: str) -> str: ...

    async def fetch(self, url: str) -> bytes: ...

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None: ...

    async def delete(self, bucket: str, path: str) -> None: ...


class S3BlobStorage:
    """
    BlobStorage over an S3-compatible store.

    boto3 is blocking, so its calls run in a worker thread; signed URLs are
    fetched with httpx. Nothing here retries: a failure surfaces as the matching
    StorageError subclass and the caller decides whether to skip or compensate.
    """

    def __init__(self, client=None, http_client: Optional[httpx.AsyncClient] = None,
                 signed_url_ttl: Optional[int] = None):
        self._client = client or boto3.client(
            "s3",
            region_name=get_storage_region(),
            endpoint_url=get_storage_endpoint(),
            config=Config(read_timeout=get_download_timeout(), retries={"max_attempts": 0}),
        )
        self._http = http_client or httpx.AsyncClient(timeout=get_download_timeout())
        self._ttl = signed_url_ttl or get_signed_url_ttl()

    async def create_signed_url(self, bucket: str, path: str) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=self._ttl,
            )
        except (BotoCoreError, ClientError) as e:
            raise SignedUrlError(f"Could not sign {bucket}/{path}: {e}") from e

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BlobDownloadError(f"Download failed: {e}") from e
        return response.content

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobUploadError(f"Upload to {bucket}/{path} failed: {e}") from e
        logger.debug("Blob uploaded", extra={"bucket": bucket, "path": path, "size": len(data)})

    async def delete(self, bucket: str, path: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            raise BlobDeleteError(f"Delete of {bucket}/{path} failed: {e}") from e

    async def aclose(self) -> None:
        await self._http.aclose()
