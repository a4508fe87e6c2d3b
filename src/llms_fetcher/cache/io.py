from __future__ import annotations

import json
import math
from pathlib import Path

from llms_fetcher.cache.models import CacheMetadata
from llms_fetcher.cache.utils import from_epoch_ms, to_epoch_ms
from llms_fetcher.fetch.errors import MetadataCorruptError


def _replace_from_tmp(path: Path, write) -> None:
    """Run ``write(tmp_path)`` then move the temp file over ``path``; no temp file survives a failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        write(tmp_path)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, payload: dict) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    _replace_from_tmp(path, lambda tmp_path: tmp_path.write_text(text, encoding="utf-8"))


def _write_untranslated(tmp_path: Path, text: str) -> None:
    # No newline translation: bytes on disk match the response body.
    with tmp_path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(text)


def atomic_write_text(path: Path, text: str) -> None:
    _replace_from_tmp(path, lambda tmp_path: _write_untranslated(tmp_path, text))


def encode_metadata(metadata: CacheMetadata) -> dict:
    return {
        "etag": metadata.etag,
        "lastModified": metadata.last_modified,
        "lastFetchedAtMs": to_epoch_ms(metadata.last_fetched_at),
    }


def _optional_str(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MetadataCorruptError(f"Metadata field {key} must be a string or null, got {type(value).__name__}")
    return value or None


def decode_metadata(payload: object) -> CacheMetadata:
    if not isinstance(payload, dict):
        raise MetadataCorruptError(f"Metadata must be a JSON object, got {type(payload).__name__}")
    raw_ts = payload.get("lastFetchedAtMs")
    if isinstance(raw_ts, bool) or not isinstance(raw_ts, (int, float)) or not math.isfinite(raw_ts):
        raise MetadataCorruptError(f"Metadata field lastFetchedAtMs is invalid: {raw_ts!r}")
    try:
        last_fetched_at = from_epoch_ms(raw_ts)
    except (OverflowError, OSError, ValueError) as e:
        raise MetadataCorruptError(f"Metadata field lastFetchedAtMs is out of range: {raw_ts!r}") from e
    return CacheMetadata(
        etag=_optional_str(payload, "etag"),
        last_modified=_optional_str(payload, "lastModified"),
        last_fetched_at=last_fetched_at,
    )


def read_metadata_file(path: Path) -> CacheMetadata | None:
    """
    Load metadata from ``path``.

    Returns None when the file does not exist. Raises MetadataCorruptError when it
    exists but cannot be read or decoded.
    """
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataCorruptError(f"Failed to read metadata file: {e}") from e
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MetadataCorruptError(f"Metadata file is not valid JSON: {e}") from e
    return decode_metadata(payload)
