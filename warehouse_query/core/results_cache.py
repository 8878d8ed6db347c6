"""
Results Cache

Content-addressed cache of warehouse results kept in an object store.

Entries are keyed by a hash of the project and the exact compiled SQL, so
any change in the query text is a different entry. Expiry is judged on read
from the entry's last-modified time; nothing is ever deleted here.

The cache never fails a query: read errors and corrupt payloads are logged
and treated as misses, and writes run as detached background tasks whose
failures are only logged.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from warehouse_query.config import settings
from warehouse_query.connectors.s3_cache_client import CacheEntryMetadata
from warehouse_query.models import RunQueryTags, WarehouseResults

logger = logging.getLogger(__name__)


class ResultsObjectStore(Protocol):
    async def get_results_metadata(self, key: str) -> Optional[CacheEntryMetadata]: ...

    async def get_results(self, key: str) -> bytes: ...

    async def upload_results(
        self, key: str, body: bytes, tags: Optional[RunQueryTags] = None
    ) -> None: ...


@dataclass(frozen=True, slots=True)
class CachedResults:
    results: WarehouseResults
    updated_time: datetime


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ResultsCache:
    def __init__(
        self,
        store: Optional[ResultsObjectStore],
        *,
        enabled: bool,
        cache_state_time_seconds: int,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self.enabled = bool(enabled) and store is not None
        self.cache_state_time_seconds = int(cache_state_time_seconds)
        self._clock = clock
        self._background_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, store: Optional[ResultsObjectStore], **kwargs
    ) -> "ResultsCache":
        return cls(
            store,
            enabled=settings.RESULTS_CACHE_ENABLED,
            cache_state_time_seconds=settings.RESULTS_CACHE_STATE_TIME_SECONDS,
            **kwargs,
        )

    @staticmethod
    def derive_key(project_uuid: str, query: str) -> str:
        return hashlib.sha256(f"{project_uuid}.{query}".encode("utf-8")).hexdigest()

    def is_fresh(self, last_modified: datetime) -> bool:
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=UTC)
        age = (self._clock() - last_modified).total_seconds()
        return age < self.cache_state_time_seconds

    async def lookup(self, key: str) -> Optional[CachedResults]:
        """
        Return cached results for `key` if present and fresh, else None.
        """
        if not self.enabled or self._store is None:
            return None

        try:
            metadata = await self._store.get_results_metadata(key)
        except Exception as e:
            logger.warning(f"Results cache metadata lookup failed for {key}: {e}")
            return None

        if metadata is None or not self.is_fresh(metadata.last_modified):
            return None

        logger.debug(f"Getting data from cache, key: {key}")
        try:
            payload = await self._store.get_results(key)
        except Exception as e:
            logger.warning(f"Results cache read failed for {key}: {e}")
            return None

        try:
            results = WarehouseResults.model_validate_json(payload)
        except (ValidationError, ValueError) as e:
            logger.error(f"Error parsing cache results for {key}: {e}")
            return None

        return CachedResults(results=results, updated_time=metadata.last_modified)

    def store(
        self,
        key: str,
        results: WarehouseResults,
        tags: Optional[RunQueryTags] = None,
    ) -> Optional[asyncio.Task]:
        """
        Schedule a background write of `results` and return immediately.

        The returned task is tracked internally; callers must not await it on
        the request path.
        """
        if not self.enabled or self._store is None:
            return None

        logger.debug(f"Writing data to cache with key {key}")
        task = asyncio.create_task(self._write(key, results, dict(tags or {})))
        self._track_task(task)
        return task

    async def _write(
        self, key: str, results: WarehouseResults, tags: RunQueryTags
    ) -> None:
        assert self._store is not None
        body = results.model_dump_json().encode("utf-8")
        await self._store.upload_results(key, body, tags)

    def _track_task(self, task: asyncio.Task) -> None:
        self._background_tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            # Retrieve the exception so asyncio doesn't warn about it.
            try:
                exc = t.exception()
            except asyncio.CancelledError:
                return
            if exc is not None:
                logger.warning(f"Results cache write failed: {exc}")

        task.add_done_callback(_done)

    @property
    def pending_writes(self) -> int:
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait for every in-flight cache write to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def shutdown(self, *, timeout_seconds: float = 5.0) -> None:
        """Give pending writes a grace period, then cancel the rest."""
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout_seconds)
        except TimeoutError:
            logger.warning(
                "Results cache shutdown timed out after %.1fs; cancelling %d writes",
                timeout_seconds,
                len(self._background_tasks),
            )
            for task in list(self._background_tasks):
                task.cancel()
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
