from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from llms_fetcher.cache.models import CacheMetadata
from llms_fetcher.cache.store import CacheStore
from llms_fetcher.cache.utils import format_rfc3339, utc_now
from llms_fetcher.fetch.errors import FetchError, HttpStatusError, MetadataWriteError
from llms_fetcher.fetch.models import FetchConfig, FetchOutcome, FetchResult
from llms_fetcher.fetch.resource_fetcher import ResourceFetcher
from llms_fetcher.logging import LogSink

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def effective_ttl(ttl: float) -> float:
    """TTL in seconds; negative, non-finite or non-numeric values become 0."""
    try:
        value = float(ttl)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def resolve_output_path(config: FetchConfig) -> Path:
    return Path(config.output_path).resolve()


class FreshnessController:
    """
    Decides whether the cached copy can be reused, revalidated or must be refetched.

    This is the only component that reasons about time and the only one allowed to
    recover from a failed fetch by falling back to the cached copy. At most one
    fetch runs per output path; concurrent callers for the same path share it.
    """

    def __init__(
        self,
        *,
        fetcher: Optional[ResourceFetcher] = None,
        store: Optional[CacheStore] = None,
        clock: Optional[Clock] = None,
        log: Optional[LogSink] = None,
    ) -> None:
        self._log: LogSink = log or logger
        self._fetcher = fetcher or ResourceFetcher()
        self._store = store or CacheStore(log=self._log)
        self._clock = clock or utc_now
        self._in_flight: Dict[Path, asyncio.Task[FetchOutcome]] = {}

    @property
    def store(self) -> CacheStore:
        return self._store

    async def ensure_fresh(self, config: FetchConfig) -> FetchOutcome:
        return await self._single_flight(config, lambda: self._ensure_fresh(config))

    async def fetch_and_save(self, config: FetchConfig) -> FetchOutcome:
        """Unconditional fetch-and-save. Never serves a stale copy."""
        return await self._single_flight(config, lambda: self._fetch_and_save(config))

    def in_flight(self, config: FetchConfig) -> bool:
        task = self._in_flight.get(resolve_output_path(config))
        return task is not None and not task.done()

    async def _single_flight(
        self,
        config: FetchConfig,
        factory: Callable[[], Awaitable[FetchOutcome]],
    ) -> FetchOutcome:
        key = resolve_output_path(config)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(factory())
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        else:
            logger.debug("Joining in-flight fetch. path=%s", key)
        # A cancelled waiter must not cancel the fetch other callers are waiting on.
        return await asyncio.shield(task)

    def _release(self, key: Path, task: asyncio.Task[FetchOutcome]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _is_within_ttl(self, metadata: CacheMetadata, now: datetime, ttl: float) -> bool:
        if ttl <= 0:
            return False
        age = now - metadata.last_fetched_at
        # A timestamp in the future means the clock moved backwards; treat as stale.
        return timedelta(0) <= age < timedelta(seconds=ttl)

    async def _ensure_fresh(self, config: FetchConfig) -> FetchOutcome:
        output_path = Path(config.output_path)
        metadata = self._store.read_metadata(Path(config.metadata_path))
        has_content = self._store.content_exists(output_path)
        now = self._clock()

        if has_content and metadata is not None and self._is_within_ttl(metadata, now, effective_ttl(config.ttl)):
            logger.debug(
                "Cached copy is fresh. path=%s last_fetched_at=%s",
                output_path,
                format_rfc3339(metadata.last_fetched_at),
            )
            return FetchOutcome.fresh(output_path)

        # Validators are only meaningful for content that is actually on disk.
        cached = metadata if has_content else None
        try:
            result = await self._fetcher.fetch(
                config.source_url,
                user_agent=config.user_agent,
                timeout=config.timeout,
                validators=cached.validators if cached is not None else None,
                max_redirects=config.max_redirects,
            )
            if result.not_modified:
                if not has_content:
                    raise HttpStatusError(304, result.final_url)
                return await self._record_not_modified(config, cached, result)
            return await self._store_update(config, result)
        except FetchError as e:
            if self._store.content_exists(output_path):
                self._log.warning(
                    "Fetch failed, serving cached copy. url=%s path=%s error=%s",
                    config.source_url,
                    output_path,
                    e,
                )
                return FetchOutcome.served_stale(output_path, e)
            self._log.warning(
                "Fetch failed and no cached copy exists. url=%s path=%s error=%s",
                config.source_url,
                output_path,
                e,
            )
            return FetchOutcome.failed(output_path, e)

    async def _fetch_and_save(self, config: FetchConfig) -> FetchOutcome:
        output_path = Path(config.output_path)
        try:
            result = await self._fetcher.fetch(
                config.source_url,
                user_agent=config.user_agent,
                timeout=config.timeout,
                max_redirects=config.max_redirects,
            )
            if result.not_modified:
                raise HttpStatusError(304, result.final_url)
            return await self._store_update(config, result)
        except FetchError as e:
            self._log.warning("Fetch failed. url=%s error=%s", config.source_url, e)
            return FetchOutcome.failed(output_path, e)

    async def _record_not_modified(
        self,
        config: FetchConfig,
        cached: Optional[CacheMetadata],
        result: FetchResult,
    ) -> FetchOutcome:
        output_path = Path(config.output_path)
        fetched_at = self._clock()
        if cached is not None:
            metadata = cached.touched(fetched_at)
        else:
            metadata = CacheMetadata(
                etag=result.validators.etag,
                last_modified=result.validators.last_modified,
                last_fetched_at=fetched_at,
            )
        try:
            await self._store.write_metadata(output_path, Path(config.metadata_path), metadata)
        except MetadataWriteError as e:
            self._log.error("Revalidated but metadata was not saved. path=%s error=%s", config.metadata_path, e)
            return FetchOutcome.revalidated(output_path, error=e)
        self._log.info("Cached copy revalidated. url=%s path=%s", config.source_url, output_path)
        return FetchOutcome.revalidated(output_path)

    async def _store_update(self, config: FetchConfig, result: FetchResult) -> FetchOutcome:
        output_path = Path(config.output_path)
        metadata = CacheMetadata(
            etag=result.validators.etag,
            last_modified=result.validators.last_modified,
            last_fetched_at=self._clock(),
        )
        try:
            await self._store.write_content_and_metadata(
                output_path,
                Path(config.metadata_path),
                result.body or "",
                metadata,
            )
        except MetadataWriteError as e:
            self._log.error("Content saved but metadata was not. path=%s error=%s", config.metadata_path, e)
            return FetchOutcome.updated(output_path, error=e)
        self._log.info(
            "Saved %s -> %s etag=%s redirects=%d",
            config.source_url,
            output_path,
            metadata.etag,
            result.redirects,
        )
        return FetchOutcome.updated(output_path)
