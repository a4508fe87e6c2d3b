from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from llms_fetcher.cache.store import CacheStore
from llms_fetcher.config.models import AppConfig, FetcherSettings
from llms_fetcher.fetch.freshness import Clock, FreshnessController, effective_ttl
from llms_fetcher.fetch.models import FetchConfig, FetchOutcome
from llms_fetcher.fetch.resource_fetcher import ResourceFetcher
from llms_fetcher.fetch.urls import derive_source_url
from llms_fetcher.logging import LogSink
from llms_fetcher.scheduling.scheduler import Scheduler

logger = logging.getLogger(__name__)


class MissingSourceError(ValueError):
    """Neither ``public_url`` nor ``source_url`` is configured."""


def resolve_source_url(settings: FetcherSettings) -> str:
    if settings.source_url and settings.source_url.strip():
        return settings.source_url.strip()
    if not settings.public_url.strip():
        raise MissingSourceError(
            "publicUrl is required. Pass --public-url, set LLMS_PUBLIC_URL or fetcher.public_url in the config file."
        )
    return derive_source_url(settings.public_url)


def default_metadata_path(output_path: Path) -> Path:
    return output_path.with_name(f".{output_path.name}.meta.json")


def build_fetch_config(settings: FetcherSettings, *, base_dir: Optional[Path] = None) -> FetchConfig:
    """Derive the per-call FetchConfig; relative paths resolve against ``base_dir`` (default: cwd)."""
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    output_path = (base / settings.output_dir / settings.output_file).resolve()
    if settings.metadata_path:
        metadata_path = (base / settings.metadata_path).resolve()
    else:
        metadata_path = default_metadata_path(output_path)
    return FetchConfig(
        source_url=resolve_source_url(settings),
        output_path=output_path,
        metadata_path=metadata_path,
        user_agent=settings.user_agent,
        timeout=settings.timeout_ms / 1000.0,
        ttl=effective_ttl(settings.ttl_hours * 60 * 60),
        max_redirects=settings.max_redirects,
    )


class LlmsFetcher:
    """
    Entry point for host applications: one configured resource, its local copy and an
    optional background scheduler. Nothing starts until the host calls ``start_scheduler``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        fetcher: Optional[ResourceFetcher] = None,
        store: Optional[CacheStore] = None,
        clock: Optional[Clock] = None,
        log: Optional[LogSink] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self._log: LogSink = log or logger
        self._fetch_config = build_fetch_config(config.fetcher, base_dir=base_dir)
        self._controller = FreshnessController(fetcher=fetcher, store=store, clock=clock, log=self._log)
        self._scheduler: Optional[Scheduler] = None

    @property
    def source_url(self) -> str:
        return self._fetch_config.source_url

    @property
    def output_path(self) -> Path:
        return self._fetch_config.output_path

    async def fetch_once(self) -> FetchOutcome:
        return await self._controller.fetch_and_save(self._fetch_config)

    async def ensure_fresh(self) -> FetchOutcome:
        return await self._controller.ensure_fresh(self._fetch_config)

    def read_text(self) -> str:
        return self._controller.store.read_content(self.output_path)

    def start_scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = Scheduler(
                self.ensure_fresh,
                interval_hours=self.config.schedule.interval_hours,
                run_at=self.config.schedule.run_at,
                log=self._log,
            )
        self._scheduler.start()
        self._log.info("Scheduling fetch %s for %s -> %s", self._scheduler.mode, self.source_url, self.output_path)
        return self._scheduler

    async def stop(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()


def start(config: AppConfig, *, log: Optional[LogSink] = None) -> LlmsFetcher:
    """Build the service from ``config`` and start its scheduler. Must be called from a running loop."""
    service = LlmsFetcher(config, log=log)
    service.start_scheduler()
    return service
