from __future__ import annotations

from yarl import URL

from llms_fetcher.fetch.errors import InvalidUrlError

LLMS_FILENAME = "llms.txt"
_SUPPORTED_SCHEMES = frozenset({"http", "https"})


def parse_http_url(raw: str) -> URL:
    """Parse an absolute http(s) URL or raise InvalidUrlError."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidUrlError(str(raw))
    try:
        url = URL(raw.strip())
    except (ValueError, TypeError) as e:
        raise InvalidUrlError(raw) from e
    if not url.is_absolute() or url.scheme not in _SUPPORTED_SCHEMES or not url.host:
        raise InvalidUrlError(raw)
    return url


def derive_source_url(public_url: str, filename: str = LLMS_FILENAME) -> str:
    """
    Return ``<public_url>/<filename>``.

    Trailing slashes on the base path are dropped before joining and any query string
    is kept. Input that does not parse as an absolute URL is joined as a plain string;
    the fetcher rejects it later.
    """
    raw = public_url.strip()
    try:
        url = parse_http_url(raw)
    except InvalidUrlError:
        return raw.rstrip("/") + "/" + filename

    joined = url.with_path(url.path.rstrip("/") + "/" + filename)
    if url.raw_query_string:
        joined = joined.with_query(url.query)
    return str(joined)
