"""Typed errors raised by the fetcher and the cache store."""

from __future__ import annotations


class FetchError(Exception):
    """Base class for every failure surfaced by a fetch or cache operation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidUrlError(FetchError):
    """Raised before any request is made when the URL is not an absolute http(s) URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid URL: {url}")


class FetchTimeoutError(FetchError, TimeoutError):
    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout:g}s: {url}")


class HttpStatusError(FetchError):
    def __init__(self, status: int, url: str = ""):
        self.status = status
        self.url = url
        super().__init__(f"Request failed with status {status}")


class RedirectLoopError(FetchError):
    """Raised when a server keeps redirecting past the configured hop limit."""

    def __init__(self, url: str, max_redirects: int):
        self.url = url
        self.max_redirects = max_redirects
        super().__init__(f"Too many redirects (max={max_redirects}) starting at {url}")


class NetworkError(FetchError):
    """Connection-level failure: DNS, refused connection, reset, TLS."""


class CacheIOError(FetchError):
    """Filesystem failure while persisting the cache entry."""


class MetadataWriteError(CacheIOError):
    """
    Content is on disk but its metadata could not be persisted.

    A later run will see no (or outdated) validators and refetch unconditionally.
    """


class MetadataCorruptError(FetchError):
    """Metadata file exists but cannot be decoded. Treated as an empty cache."""
