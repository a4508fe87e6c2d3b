import asyncio
import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import llms_fetcher
from http_support import EtagServer, unreachable_url
from llms_fetcher.__main__ import EXIT_FAILED, EXIT_OK, _main_async
from llms_fetcher.config.models import AppConfig, FetcherSettings, ScheduleSettings
from llms_fetcher.service import LlmsFetcher


class RootLoggerGuard:
    """init_logging reconfigures the root logger; put it back after each test."""

    def __enter__(self) -> None:
        root = logging.getLogger()
        self._handlers = list(root.handlers)
        self._level = root.level

    def __exit__(self, *exc: object) -> None:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if handler not in self._handlers:
                handler.close()
            root.removeHandler(handler)
        for handler in self._handlers:
            root.addHandler(handler)
        root.setLevel(self._level)


class LlmsFetcherServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.server = EtagServer(body="# Service\n")
        await self.server.start()
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()

    async def asyncTearDown(self) -> None:
        await self.server.close()
        self._tmp.cleanup()

    def _config(self, **schedule: object) -> AppConfig:
        return AppConfig(
            fetcher=FetcherSettings(source_url=self.server.url(), output_dir="out", ttl_hours=1),
            schedule=ScheduleSettings(**schedule),
        )

    async def test_ensure_fresh_and_read_text(self) -> None:
        service = LlmsFetcher(self._config(), base_dir=self.root)

        self.assertEqual(service.output_path, self.root / "out" / "llms.txt")
        first = await service.ensure_fresh()
        second = await service.ensure_fresh()

        self.assertEqual((first.kind, second.kind), ("updated", "fresh"))
        self.assertEqual(service.read_text(), "# Service\n")
        self.assertEqual(len(self.server.requests), 1)

    async def test_fetch_once_always_hits_network(self) -> None:
        service = LlmsFetcher(self._config(), base_dir=self.root)
        await service.fetch_once()
        outcome = await service.fetch_once()

        self.assertEqual(outcome.kind, "updated")
        self.assertEqual(len(self.server.requests), 2)

    async def test_scheduler_drives_ensure_fresh(self) -> None:
        service = LlmsFetcher(self._config(interval_hours=6), base_dir=self.root)

        scheduler = service.start_scheduler()
        for _ in range(200):
            if scheduler.runs and service.output_path.exists():
                break
            await asyncio.sleep(0.01)
        await service.stop()

        self.assertEqual(scheduler.runs, 1)
        self.assertFalse(scheduler.running)
        self.assertEqual(service.read_text(), "# Service\n")

    async def test_package_exposes_entry_points(self) -> None:
        self.assertIs(llms_fetcher.LlmsFetcher, LlmsFetcher)
        self.assertTrue(callable(llms_fetcher.start))


class CommandLineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.server = EtagServer(body="# From CLI\n")
        await self.server.start()
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve()
        self._guard = RootLoggerGuard()
        self._guard.__enter__()
        self._env = mock.patch.dict(os.environ, {}, clear=True)
        self._env.start()

    async def asyncTearDown(self) -> None:
        self._env.stop()
        self._guard.__exit__(None, None, None)
        await self.server.close()
        self._tmp.cleanup()

    def _argv(self, command: str, *extra: str) -> list:
        return [
            "--config",
            str(self.root / "missing.yaml"),
            "--env-file",
            str(self.root / ".env"),
            command,
            "--output-dir",
            str(self.root / "public"),
            *extra,
        ]

    async def test_run_saves_file(self) -> None:
        code = await _main_async(self._argv("run", "--source-url", self.server.url()))

        self.assertEqual(code, EXIT_OK)
        self.assertEqual((self.root / "public" / "llms.txt").read_text(encoding="utf-8"), "# From CLI\n")

    async def test_run_dry_run_makes_no_request(self) -> None:
        code = await _main_async(self._argv("run", "--public-url", "https://example.com", "--dry-run"))

        self.assertEqual(code, EXIT_OK)
        self.assertEqual(self.server.requests, [])
        self.assertFalse((self.root / "public").exists())

    async def test_run_failure_exits_non_zero(self) -> None:
        code = await _main_async(self._argv("run", "--source-url", unreachable_url()))

        self.assertEqual(code, EXIT_FAILED)
        self.assertFalse((self.root / "public" / "llms.txt").exists())

    async def test_missing_public_url_exits_non_zero(self) -> None:
        code = await _main_async(self._argv("ensure"))

        self.assertEqual(code, EXIT_FAILED)

    async def test_ensure_serves_stale_copy_with_success_code(self) -> None:
        self.assertEqual(await _main_async(self._argv("ensure", "--source-url", self.server.url())), EXIT_OK)

        code = await _main_async(self._argv("ensure", "--source-url", unreachable_url()))

        self.assertEqual(code, EXIT_OK)
        self.assertEqual((self.root / "public" / "llms.txt").read_text(encoding="utf-8"), "# From CLI\n")

    async def test_watch_runs_for_a_bounded_time(self) -> None:
        code = await _main_async(
            self._argv("watch", "--source-url", self.server.url(), "--interval-hours", "1", "--run-seconds", "0.3")
        )

        self.assertEqual(code, EXIT_OK)
        self.assertEqual(len(self.server.requests), 1)


if __name__ == "__main__":
    unittest.main()
