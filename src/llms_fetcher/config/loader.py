from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional, Sequence

from pydantic import BaseModel

from llms_fetcher.config.models import AppConfig, ConfigLoadRequest

# Flat variable names understood by earlier releases of the tool.
LEGACY_ENV_ALIASES: Mapping[str, str] = {
    "LLMS_PUBLIC_URL": "fetcher.public_url",
    "LLMS_SOURCE_URL": "fetcher.source_url",
    "LLMS_OUTPUT_DIR": "fetcher.output_dir",
    "LLMS_OUTPUT_FILE": "fetcher.output_file",
    "LLMS_USER_AGENT": "fetcher.user_agent",
    "LLMS_TIMEOUT_MS": "fetcher.timeout_ms",
    "LLMS_TTL_HOURS": "fetcher.ttl_hours",
    "LLMS_RUN_AT": "schedule.run_at",
    "LLMS_INTERVAL_HOURS": "schedule.interval_hours",
}


def _read_yaml_config(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: PyYAML is required to load the YAML config file. Install 'PyYAML'."
        ) from e

    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    try:
        from dotenv import load_dotenv  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: python-dotenv is required to load .env. Install 'python-dotenv'."
        ) from e

    if not dotenv_path.exists():
        return
    load_dotenv(dotenv_path=dotenv_path, override=False)


def _is_section(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _validate_key_path(path: Sequence[str], model: type[BaseModel] = AppConfig) -> None:
    dotted = ".".join(path)
    current: type[BaseModel] = model
    for index, segment in enumerate(path):
        field = current.model_fields.get(segment)
        if field is None:
            raise KeyError(f"Unknown configuration key path: {dotted}")
        is_last = index == len(path) - 1
        if _is_section(field.annotation):
            if is_last:
                raise TypeError(f"Configuration key path points to a section, not a value: {dotted}")
            current = field.annotation
        elif not is_last:
            raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")


def _set_value(config: MutableMapping[str, Any], path: Sequence[str], value: Any) -> None:
    _validate_key_path(path)
    cur: MutableMapping[str, Any] = config
    for segment in path[:-1]:
        next_value = cur.get(segment)
        if next_value is None:
            next_value = {}
            cur[segment] = next_value
        if not isinstance(next_value, dict):
            dotted = ".".join(path)
            raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")
        cur = next_value
    cur[path[-1]] = value


def _env_var_name_to_segments(env_var_name: str, prefix: str) -> Sequence[str]:
    remainder = env_var_name[len(prefix) :]
    parts = [p for p in remainder.split("__") if p]
    if not parts:
        raise ValueError(f"Invalid environment variable override name: {env_var_name}")
    return [p.lower() for p in parts]


def _apply_legacy_env(config: MutableMapping[str, Any]) -> None:
    for name, dotted in LEGACY_ENV_ALIASES.items():
        value = os.environ.get(name)
        if value:
            _set_value(config, dotted.split("."), value)


def _apply_env_overrides(config: MutableMapping[str, Any], env_prefix: str) -> None:
    for name, value in os.environ.items():
        if not name.startswith(env_prefix):
            continue
        # Pydantic handles type coercion/validation later.
        _set_value(config, _env_var_name_to_segments(name, env_prefix), value)


def apply_overrides(config: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    """Apply dotted-path overrides (``{"fetcher.public_url": ...}``). None values are skipped."""
    for dotted, value in overrides.items():
        if value is None:
            continue
        _set_value(config, dotted.split("."), value)


class YamlConfigLoader:
    """
    Resolve configuration. Highest precedence first:

    1. explicit overrides (CLI flags)
    2. ``LLMS__SECTION__KEY`` environment variables
    3. legacy flat variables such as ``LLMS_PUBLIC_URL``
    4. the YAML file
    5. model defaults

    Variables from the ``.env`` file never replace ones already set in the environment.
    """

    async def load(
        self,
        request: ConfigLoadRequest = ConfigLoadRequest(),
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> AppConfig:
        config = _read_yaml_config(Path(request.yaml_path))

        if request.dotenv_path is not None:
            _load_dotenv_if_present(Path(request.dotenv_path))

        _apply_legacy_env(config)
        _apply_env_overrides(config, request.env_prefix)
        if overrides:
            apply_overrides(config, overrides)
        return AppConfig.model_validate(config)
