"""
S3 Results Cache Client

Thin async wrapper around boto3 for the results cache bucket. boto3 is
blocking, so every call runs in a thread executor. Failures are logged here
and re-raised as CacheError; callers decide whether they are fatal.
"""

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from warehouse_query.config import settings
from warehouse_query.core.errors import CacheError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True, slots=True)
class CacheEntryMetadata:
    last_modified: datetime
    content_length: Optional[int] = None


class S3CacheClient:
    def __init__(
        self,
        *,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        force_path_style: bool = False,
        executor: Optional[Executor] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self._executor = executor
        self._s3 = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=BotoConfig(
                s3={"addressing_style": "path" if force_path_style else "auto"},
            ),
        )

    @classmethod
    def from_settings(cls, executor: Optional[Executor] = None) -> "S3CacheClient":
        if not settings.RESULTS_S3_BUCKET:
            raise ValueError("RESULTS_S3_BUCKET must be set when the results cache is enabled")
        return cls(
            bucket=settings.RESULTS_S3_BUCKET,
            region=settings.RESULTS_S3_REGION,
            endpoint_url=settings.RESULTS_S3_ENDPOINT,
            access_key=settings.RESULTS_S3_ACCESS_KEY,
            secret_key=settings.RESULTS_S3_SECRET_KEY,
            force_path_style=settings.RESULTS_S3_FORCE_PATH_STYLE,
            executor=executor,
        )

    @staticmethod
    def _object_key(key: str) -> str:
        return f"{key}.json"

    async def _call(self, operation: str, key: str, func, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, lambda: func(**kwargs))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to {operation} results cache entry {key}: {e}")
            raise CacheError(f"Results cache {operation} failed: {e}") from e

    async def get_results_metadata(self, key: str) -> Optional[CacheEntryMetadata]:
        """
        Return the entry metadata, or None if the entry does not exist.
        """
        try:
            head = await asyncio.get_running_loop().run_in_executor(
                self._executor,
                lambda: self._s3.head_object(Bucket=self.bucket, Key=self._object_key(key)),
            )
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            logger.error(f"Failed to fetch results cache metadata {key}: {e}")
            raise CacheError(f"Results cache metadata lookup failed: {e}") from e
        except BotoCoreError as e:
            logger.error(f"Failed to fetch results cache metadata {key}: {e}")
            raise CacheError(f"Results cache metadata lookup failed: {e}") from e

        return CacheEntryMetadata(
            last_modified=head["LastModified"],
            content_length=head.get("ContentLength"),
        )

    async def get_results(self, key: str) -> bytes:
        response = await self._call(
            "read",
            key,
            self._s3.get_object,
            Bucket=self.bucket,
            Key=self._object_key(key),
        )
        body = response["Body"]
        try:
            return await asyncio.get_running_loop().run_in_executor(self._executor, body.read)
        except (BotoCoreError, OSError) as e:
            logger.error(f"Failed to read results cache body {key}: {e}")
            raise CacheError(f"Results cache read failed: {e}") from e
        finally:
            body.close()

    async def upload_results(
        self, key: str, body: bytes, tags: Optional[Dict[str, str]] = None
    ) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._object_key(key),
            "Body": body,
            "ContentType": "application/json",
        }
        if tags:
            kwargs["Tagging"] = urlencode(tags)
        await self._call("write", key, self._s3.put_object, **kwargs)
