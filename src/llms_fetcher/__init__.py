"""Keep a local copy of a site's llms.txt fresh with conditional HTTP requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from llms_fetcher.fetch.errors import (
    CacheIOError,
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    InvalidUrlError,
    MetadataCorruptError,
    MetadataWriteError,
    NetworkError,
    RedirectLoopError,
)
from llms_fetcher.fetch.models import FetchConfig, FetchOutcome

if TYPE_CHECKING:
    from llms_fetcher.service import LlmsFetcher, start

__version__ = "0.1.0"

__all__ = [
    "CacheIOError",
    "FetchConfig",
    "FetchError",
    "FetchOutcome",
    "FetchTimeoutError",
    "HttpStatusError",
    "InvalidUrlError",
    "LlmsFetcher",
    "MetadataCorruptError",
    "MetadataWriteError",
    "NetworkError",
    "RedirectLoopError",
    "start",
]


def __getattr__(name: str):
    if name == "LlmsFetcher":
        from llms_fetcher.service import LlmsFetcher as _LlmsFetcher

        return _LlmsFetcher
    if name == "start":
        from llms_fetcher.service import start as _start

        return _start
    raise AttributeError(name)
