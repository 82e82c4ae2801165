"""
S3-compatible Object Storage integration (durable home of file content).

업로드 요청 경로에서는 직접 쓰지 않습니다. 스테이징된 파일은 전송 워커가 이 서비스로
업로드하고, 다운로드는 위치가 스테이징 밖일 때만 이 서비스를 거칩니다.

오브젝트 키 = 콘텐츠 해시 (중복 메시지에도 같은 키에 덮어쓰기 → 멱등)
"""
import asyncio
import functools
import logging
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloudstorage.config import get_settings
from cloudstorage.utils.prometheus_metrics import record_external_request

logger = logging.getLogger("cloudstorage.storage")


class ObjectStorageError(Exception):
    """Object storage call failed."""
    pass


class ObjectStorageService:
    """
    Thin async wrapper around a boto3 S3 client.

    boto3 is blocking, so every call runs in the default executor.
    """

    def __init__(self, client=None, bucket: Optional[str] = None):
        self.settings = get_settings()
        self._s3_client = client
        self.bucket = bucket or self.settings.s3_bucket

    def _get_s3_client(self):
        """Get or create the S3 client."""
        if self._s3_client is not None:
            return self._s3_client

        if not self.settings.s3_access_key or not self.settings.s3_secret_key:
            raise ObjectStorageError(
                "S3 credentials not configured. Set S3_ACCESS_KEY and S3_SECRET_KEY."
            )

        # 엔드포인트는 호스트만 사용 (경로가 붙으면 버킷 이름으로 오인됨)
        endpoint = (self.settings.s3_endpoint_url or "").strip()
        if endpoint:
            parsed = urlparse(endpoint if "://" in endpoint else f"https://{endpoint}")
            endpoint = f"{parsed.scheme or 'https'}://{parsed.netloc or parsed.path.split('/')[0]}"

        self._s3_client = boto3.client(
            "s3",
            aws_access_key_id=self.settings.s3_access_key,
            aws_secret_access_key=self.settings.s3_secret_key,
            endpoint_url=endpoint or None,
            region_name=self.settings.s3_region_name,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )
        return self._s3_client

    async def _run(self, op: str, key: str, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            async with record_external_request("object_storage"):
                return await loop.run_in_executor(
                    None, functools.partial(func, *args, **kwargs)
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                f"Object storage {op} failed",
                extra={"event": "storage", "op": op, "object": key, "error_type": type(e).__name__},
            )
            raise ObjectStorageError(f"Object storage {op} failed: {e}") from e

    async def upload_file(self, local_path: str, key: str) -> str:
        """
        Upload a staged file under ``key``.

        Returns:
            The durable location string stored in StoredFile.file_location
        """
        client = self._get_s3_client()
        await self._run("upload", key, client.upload_file, local_path, self.bucket, key)
        return self.location_for(key)

    async def download_file(self, key: str) -> bytes:
        """Download an object's content."""
        client = self._get_s3_client()
        response = await self._run("download", key, client.get_object, Bucket=self.bucket, Key=key)
        body = response["Body"]
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, body.read)
        finally:
            body.close()

    async def file_exists(self, key: str) -> bool:
        """HEAD the object; 404 means absent."""
        client = self._get_s3_client()
        try:
            await self._run("head", key, client.head_object, Bucket=self.bucket, Key=key)
        except ObjectStorageError as e:
            cause = e.__cause__
            if isinstance(cause, ClientError) and cause.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def delete_file(self, key: str) -> None:
        client = self._get_s3_client()
        await self._run("delete", key, client.delete_object, Bucket=self.bucket, Key=key)

    def location_for(self, key: str) -> str:
        return f"oss://{self.bucket}/{key}"

    def key_from_location(self, location: str) -> str:
        """``oss://<bucket>/<key>`` -> ``<key>``; bare keys pass through."""
        prefix = f"oss://{self.bucket}/"
        if location.startswith(prefix):
            return location[len(prefix):]
        return location


# Singleton instance
_storage_service: Optional[ObjectStorageService] = None


def get_storage_service() -> ObjectStorageService:
    """Get the singleton storage service instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = ObjectStorageService()
    return _storage_service
