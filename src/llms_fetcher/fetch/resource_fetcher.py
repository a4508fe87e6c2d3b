from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import aiohttp
from yarl import URL

from llms_fetcher.cache.models import Validators
from llms_fetcher.fetch.errors import (
    FetchTimeoutError,
    HttpStatusError,
    InvalidUrlError,
    NetworkError,
    RedirectLoopError,
)
from llms_fetcher.fetch.models import DEFAULT_MAX_REDIRECTS, FetchResult
from llms_fetcher.fetch.urls import parse_http_url

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/plain, */*"


class ResourceFetcher:
    """
    Single conditional GET of a text resource.

    Redirects are followed by hand so the hop limit is exact. The whole call, redirects
    included, is bounded by ``timeout``; on expiry the request task is cancelled and
    the connection is closed. This class never touches the filesystem.
    """

    def __init__(self, *, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session

    async def fetch(
        self,
        url: str,
        *,
        user_agent: str,
        timeout: float,
        validators: Optional[Validators] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ) -> FetchResult:
        start_url = parse_http_url(url)
        sent = validators or Validators()
        headers = self._build_headers(user_agent=user_agent, validators=sent)
        logger.debug(
            "Fetch started. url=%s conditional=%s timeout=%s",
            start_url,
            not sent.is_empty(),
            timeout,
        )
        try:
            return await asyncio.wait_for(
                self._fetch_with_session(
                    start_url=start_url,
                    headers=headers,
                    sent=sent,
                    timeout=timeout,
                    max_redirects=max(0, int(max_redirects)),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(str(start_url), timeout) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request to {start_url} failed: {e}") from e

    def _build_headers(self, *, user_agent: str, validators: Validators) -> Dict[str, str]:
        headers = {
            "User-Agent": user_agent,
            "Accept": ACCEPT_HEADER,
        }
        if validators.etag:
            headers["If-None-Match"] = validators.etag
        if validators.last_modified:
            headers["If-Modified-Since"] = validators.last_modified
        return headers

    async def _fetch_with_session(
        self,
        *,
        start_url: URL,
        headers: Dict[str, str],
        sent: Validators,
        timeout: float,
        max_redirects: int,
    ) -> FetchResult:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        if self._session is not None:
            return await self._follow(
                self._session,
                start_url=start_url,
                headers=headers,
                sent=sent,
                client_timeout=client_timeout,
                max_redirects=max_redirects,
            )
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            return await self._follow(
                session,
                start_url=start_url,
                headers=headers,
                sent=sent,
                client_timeout=client_timeout,
                max_redirects=max_redirects,
            )

    async def _follow(
        self,
        session: aiohttp.ClientSession,
        *,
        start_url: URL,
        headers: Dict[str, str],
        sent: Validators,
        client_timeout: aiohttp.ClientTimeout,
        max_redirects: int,
    ) -> FetchResult:
        current = start_url
        redirects = 0
        while True:
            async with session.get(
                current,
                headers=headers,
                allow_redirects=False,
                timeout=client_timeout,
            ) as response:
                status = response.status

                if status == 304:
                    logger.debug("Fetch not modified. url=%s redirects=%d", current, redirects)
                    return FetchResult(
                        status=304,
                        body=None,
                        validators=Validators(
                            etag=response.headers.get("ETag") or sent.etag,
                            last_modified=response.headers.get("Last-Modified") or sent.last_modified,
                        ),
                        final_url=str(current),
                        redirects=redirects,
                    )

                if 300 <= status < 400:
                    location = response.headers.get("Location")
                    if not location:
                        raise HttpStatusError(status, str(current))
                    if redirects >= max_redirects:
                        raise RedirectLoopError(str(start_url), max_redirects)
                    current = self._resolve_location(current, location)
                    redirects += 1
                    logger.debug("Following redirect. status=%s location=%s hop=%d", status, current, redirects)
                    continue

                if status != 200:
                    raise HttpStatusError(status, str(current))

                raw = await response.read()
                logger.debug("Fetch succeeded. url=%s bytes=%d redirects=%d", current, len(raw), redirects)
                return FetchResult(
                    status=200,
                    body=raw.decode("utf-8", errors="replace"),
                    validators=Validators(
                        etag=response.headers.get("ETag"),
                        last_modified=response.headers.get("Last-Modified"),
                    ),
                    final_url=str(current),
                    redirects=redirects,
                )

    def _resolve_location(self, current: URL, location: str) -> URL:
        try:
            target = current.join(URL(location))
        except (ValueError, TypeError) as e:
            raise InvalidUrlError(location) from e
        return parse_http_url(str(target))
