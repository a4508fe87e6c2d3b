from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from llms_fetcher.cache.io import (
    atomic_write_json,
    atomic_write_text,
    encode_metadata,
    read_metadata_file,
)
from llms_fetcher.cache.models import CacheMetadata
from llms_fetcher.fetch.errors import CacheIOError, MetadataCorruptError, MetadataWriteError
from llms_fetcher.logging import LogSink

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Sole owner of the on-disk cache entry: the content file and its metadata file.

    Writes to the same output path are serialized with a per-path lock. Unrelated
    paths never wait on each other.
    """

    def __init__(self, *, log: Optional[LogSink] = None) -> None:
        self._log: LogSink = log or logger
        self._locks: Dict[Path, asyncio.Lock] = {}

    def lock_for(self, output_path: Path) -> asyncio.Lock:
        key = Path(output_path).resolve()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def read_metadata(self, metadata_path: Path) -> Optional[CacheMetadata]:
        try:
            return read_metadata_file(Path(metadata_path))
        except MetadataCorruptError as e:
            self._log.warning("Ignoring unreadable cache metadata. path=%s error=%s", metadata_path, e)
            return None

    def content_exists(self, output_path: Path) -> bool:
        return Path(output_path).is_file()

    def read_content(self, output_path: Path) -> str:
        try:
            with Path(output_path).open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except OSError as e:
            raise CacheIOError(f"Failed to read cached content. path={output_path} error={e}") from e

    async def write_content_and_metadata(
        self,
        output_path: Path,
        metadata_path: Path,
        content: str,
        metadata: CacheMetadata,
    ) -> None:
        """
        Persist content, then metadata, as one logical cache entry.

        The previous metadata is removed before the content is replaced, and the new
        metadata is written last. Validators on disk therefore never describe content
        that is not on disk; after any failure the next fetch is unconditional.

        Raises CacheIOError if the content could not be written (the previous content
        is kept) and MetadataWriteError if the content was written but the metadata
        was not.
        """
        output_path = Path(output_path)
        metadata_path = Path(metadata_path)
        async with self.lock_for(output_path):
            try:
                if metadata_path.is_file():
                    metadata_path.unlink()
            except OSError as e:
                raise CacheIOError(f"Failed to invalidate cache metadata. path={metadata_path} error={e}") from e
            try:
                atomic_write_text(output_path, content)
            except OSError as e:
                raise CacheIOError(f"Failed to write cached content. path={output_path} error={e}") from e
            try:
                atomic_write_json(metadata_path, encode_metadata(metadata))
            except OSError as e:
                raise MetadataWriteError(
                    f"Content written but metadata was not. path={metadata_path} error={e}"
                ) from e
        logger.debug("Cache entry written. path=%s bytes=%d", output_path, len(content.encode("utf-8")))

    async def write_metadata(self, output_path: Path, metadata_path: Path, metadata: CacheMetadata) -> None:
        """Replace only the metadata of an existing entry (not-modified revalidation)."""
        metadata_path = Path(metadata_path)
        async with self.lock_for(Path(output_path)):
            try:
                atomic_write_json(metadata_path, encode_metadata(metadata))
            except OSError as e:
                raise MetadataWriteError(f"Failed to write cache metadata. path={metadata_path} error={e}") from e
