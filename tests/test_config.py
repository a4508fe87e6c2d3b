import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pydantic import ValidationError

from llms_fetcher.config import YamlConfigLoader
from llms_fetcher.config.models import ConfigLoadRequest, FetcherSettings
from llms_fetcher.fetch.urls import derive_source_url
from llms_fetcher.service import MissingSourceError, build_fetch_config


class YamlConfigLoaderTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.yaml_path = self.root / "llms-fetcher.yaml"
        self.request = ConfigLoadRequest(yaml_path=str(self.yaml_path), dotenv_path=str(self.root / ".env"))

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_defaults_without_any_source(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            config = await YamlConfigLoader().load(self.request)

        self.assertEqual(config.fetcher.public_url, "")
        self.assertEqual(config.fetcher.output_dir, "public")
        self.assertEqual(config.fetcher.output_file, "llms.txt")
        self.assertEqual(config.fetcher.user_agent, "llms-fetcher/0.1")
        self.assertEqual(config.fetcher.timeout_ms, 20000)
        self.assertEqual(config.schedule.run_at, "02:00")
        self.assertEqual(config.logging.level, "INFO")

    async def test_precedence_cli_over_env_over_legacy_over_yaml(self) -> None:
        self.yaml_path.write_text(
            "fetcher:\n"
            "  public_url: https://yaml.example.com\n"
            "  output_dir: from-yaml\n"
            "  output_file: yaml.txt\n"
            "  ttl_hours: 1\n"
            "schedule:\n"
            "  run_at: '04:30'\n",
            encoding="utf-8",
        )
        env = {
            "LLMS_OUTPUT_DIR": "from-legacy",
            "LLMS_OUTPUT_FILE": "legacy.txt",
            "LLMS__FETCHER__OUTPUT_FILE": "env.txt",
            "LLMS__FETCHER__TIMEOUT_MS": "1500",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = await YamlConfigLoader().load(
                self.request,
                overrides={"fetcher.public_url": "https://cli.example.com", "fetcher.ttl_hours": None},
            )

        self.assertEqual(config.fetcher.public_url, "https://cli.example.com")
        self.assertEqual(config.fetcher.output_dir, "from-legacy")
        self.assertEqual(config.fetcher.output_file, "env.txt")
        self.assertEqual(config.fetcher.timeout_ms, 1500)
        self.assertEqual(config.fetcher.ttl_hours, 1.0)
        self.assertEqual(config.schedule.run_at, "04:30")

    async def test_dotenv_does_not_override_environment(self) -> None:
        (self.root / ".env").write_text(
            "LLMS_PUBLIC_URL=https://dotenv.example.com\nLLMS_RUN_AT=05:00\n",
            encoding="utf-8",
        )
        with mock.patch.dict(os.environ, {"LLMS_RUN_AT": "06:00"}, clear=True):
            config = await YamlConfigLoader().load(self.request)

        self.assertEqual(config.fetcher.public_url, "https://dotenv.example.com")
        self.assertEqual(config.schedule.run_at, "06:00")

    async def test_unknown_env_key_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"LLMS__FETCHER__COLOR": "blue"}, clear=True):
            with self.assertRaises(KeyError):
                await YamlConfigLoader().load(self.request)

    async def test_unknown_yaml_key_fails_validation(self) -> None:
        self.yaml_path.write_text("fetcher:\n  colour: blue\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValidationError):
                await YamlConfigLoader().load(self.request)

    async def test_invalid_timeout_fails_validation(self) -> None:
        with mock.patch.dict(os.environ, {"LLMS_TIMEOUT_MS": "0"}, clear=True):
            with self.assertRaises(ValidationError):
                await YamlConfigLoader().load(self.request)

    async def test_non_mapping_yaml_is_rejected(self) -> None:
        self.yaml_path.write_text("- just\n- a list\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                await YamlConfigLoader().load(self.request)


class SourceUrlTests(unittest.TestCase):
    def test_derive_source_url(self) -> None:
        cases = {
            "https://example.com": "https://example.com/llms.txt",
            "https://example.com/": "https://example.com/llms.txt",
            "https://example.com/docs/": "https://example.com/docs/llms.txt",
            "https://example.com/docs?lang=en": "https://example.com/docs/llms.txt?lang=en",
            "  https://example.com/docs  ": "https://example.com/docs/llms.txt",
            "example.com/": "example.com/llms.txt",
        }
        for public_url, expected in cases.items():
            with self.subTest(public_url=public_url):
                self.assertEqual(derive_source_url(public_url), expected)


class BuildFetchConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name).resolve()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_derives_paths_and_durations(self) -> None:
        settings = FetcherSettings(public_url="https://example.com/", timeout_ms=1500, ttl_hours=2)
        config = build_fetch_config(settings, base_dir=self.base)

        self.assertEqual(config.source_url, "https://example.com/llms.txt")
        self.assertEqual(config.output_path, self.base / "public" / "llms.txt")
        self.assertEqual(config.metadata_path, self.base / "public" / ".llms.txt.meta.json")
        self.assertEqual(config.timeout, 1.5)
        self.assertEqual(config.ttl, 7200)
        self.assertEqual(config.user_agent, "llms-fetcher/0.1")
        self.assertEqual(config.max_redirects, 5)

    def test_explicit_source_url_and_metadata_path(self) -> None:
        settings = FetcherSettings(
            public_url="https://ignored.example.com",
            source_url="https://cdn.example.com/llms-full.txt",
            metadata_path="state/meta.json",
        )
        config = build_fetch_config(settings, base_dir=self.base)

        self.assertEqual(config.source_url, "https://cdn.example.com/llms-full.txt")
        self.assertEqual(config.metadata_path, self.base / "state" / "meta.json")

    def test_invalid_ttl_is_clamped(self) -> None:
        for ttl_hours in [-3, float("nan"), float("inf")]:
            with self.subTest(ttl_hours=ttl_hours):
                settings = FetcherSettings(public_url="https://example.com", ttl_hours=ttl_hours)
                self.assertEqual(build_fetch_config(settings, base_dir=self.base).ttl, 0.0)

    def test_missing_source_is_rejected(self) -> None:
        with self.assertRaises(MissingSourceError):
            build_fetch_config(FetcherSettings(), base_dir=self.base)


if __name__ == "__main__":
    unittest.main()
