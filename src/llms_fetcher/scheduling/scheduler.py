from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Tuple

from llms_fetcher.fetch.models import FetchOutcome
from llms_fetcher.logging import LogSink

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
MIN_INTERVAL_SECONDS = 1.0

Job = Callable[[], Awaitable[FetchOutcome]]


def parse_run_at(run_at: str) -> Optional[Tuple[int, int]]:
    """Parse ``HH:MM`` into (hour, minute); None when malformed or out of range."""
    parts = str(run_at).strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour, minute


def delay_until_next_run(run_at: str, now: Optional[datetime] = None) -> float:
    """
    Seconds from ``now`` until the next wall-clock ``run_at`` in ``now``'s timezone.

    If that time has already passed today (or is exactly now) the run is tomorrow.
    A malformed ``run_at`` yields a full day.
    """
    parsed = parse_run_at(run_at)
    if parsed is None:
        return float(DAY_SECONDS)
    hour, minute = parsed
    now = now or datetime.now().astimezone()
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def interval_seconds(interval_hours: float) -> float:
    if not math.isfinite(interval_hours) or interval_hours <= 0:
        return 0.0
    return max(MIN_INTERVAL_SECONDS, interval_hours * 60 * 60)


class Scheduler:
    """
    Drives a fetch job either every ``interval_hours`` (first run immediately) or
    daily at ``run_at`` (first run at the next occurrence, then every 24 hours).

    ``stop()`` prevents further runs. A run already in progress is allowed to finish.
    """

    def __init__(
        self,
        job: Job,
        *,
        interval_hours: float = 0.0,
        run_at: str = "02:00",
        log: Optional[LogSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._job = job
        self._interval_seconds = interval_seconds(interval_hours)
        self._run_at = run_at
        self._log: LogSink = log or logger
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._runs = 0

    @property
    def mode(self) -> str:
        if self._interval_seconds > 0:
            return f"every {self._interval_seconds / 3600:g}h"
        return f"daily at {self._run_at}"

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        self._log.info("Scheduler started. mode=%s", self.mode)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._log.info("Scheduler stopped. runs=%d", self._runs)

    async def wait(self) -> None:
        """Block until the scheduler is stopped."""
        if self._task:
            await asyncio.shield(self._task)

    async def run_once(self) -> Optional[FetchOutcome]:
        self._runs += 1
        try:
            outcome = await self._job()
        except Exception as e:
            self._log.error("Scheduled fetch raised unexpectedly. error=%s", e, exc_info=True)
            return None
        if outcome.kind == "failed":
            self._log.error("Scheduled fetch failed, will retry at the next run. error=%s", outcome.error)
        else:
            self._log.info("Scheduled fetch finished. outcome=%s path=%s", outcome.kind, outcome.path)
        return outcome

    def _first_delay(self) -> float:
        if self._interval_seconds > 0:
            return 0.0
        return delay_until_next_run(self._run_at, self._clock())

    def _next_delay(self) -> float:
        return self._interval_seconds if self._interval_seconds > 0 else float(DAY_SECONDS)

    async def _loop(self) -> None:
        delay = self._first_delay()
        while True:
            if await self._sleep_or_stop(delay):
                return
            await self.run_once()
            delay = self._next_delay()

    async def _sleep_or_stop(self, seconds: float) -> bool:
        """Wait ``seconds``; returns True if a stop was requested meanwhile."""
        if self._stop_event.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
