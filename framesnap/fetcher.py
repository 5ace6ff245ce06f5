"""Network fetch primitive and the cached text / data-URL lookups built on it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

import requests

from .cache import DEFAULT_CACHE, FetchCache
from .errors import FetchFailure
from .images import resolve_content_type, to_data_url

logger = logging.getLogger("framesnap")

MAX_ASSET_BYTES = 25 * 1024 * 1024
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

BlobReader = Callable[[str], Awaitable[str]]


@dataclass
class FetchResponse:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        charset = "utf-8"
        for name, value in self.headers.items():
            if name.lower() == "content-type" and "charset=" in value.lower():
                charset = value.lower().split("charset=", 1)[1].split(";")[0].strip() or charset
        try:
            return self.body.decode(charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


class Fetcher:
    """Fetches resources and memoises them in a ``FetchCache``.

    Subclasses implement :meth:`fetch`, which is blocking and runs on a worker
    thread. ``blob:`` URLs only exist inside the page, so they are handed to
    ``blob_reader`` when one is configured.
    """

    def __init__(
        self,
        cache: Optional[FetchCache[str]] = None,
        blob_reader: Optional[BlobReader] = None,
    ) -> None:
        self.cache = cache if cache is not None else DEFAULT_CACHE
        self.blob_reader = blob_reader

    def fetch(self, url: str, credentialed: bool = False) -> FetchResponse:
        raise NotImplementedError

    async def _fetch_ok(self, url: str, credentialed: bool) -> FetchResponse:
        try:
            response = await asyncio.to_thread(self.fetch, url, credentialed)
        except requests.RequestException as exc:
            raise FetchFailure(url, str(exc)) from exc
        if not response.ok:
            raise FetchFailure(url, f"HTTP {response.status}", response.status)
        if len(response.body) > MAX_ASSET_BYTES:
            raise FetchFailure(url, f"response larger than {MAX_ASSET_BYTES} bytes")
        return response

    async def fetch_text(self, url: str) -> str:
        """FETCH_TEXT: credentialed text fetch, cached per URL."""
        if not url:
            raise FetchFailure(url, "Missing url")
        cache_key = f"text:{url}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        response = await self._fetch_ok(url, credentialed=True)
        return self.cache.put(cache_key, response.text)

    async def fetch_data_url(self, url: str) -> str:
        """FETCH_DATA_URL: embedded representation of ``url``, cached per URL."""
        if not url:
            raise FetchFailure(url, "Missing url")
        if url.startswith("data:"):
            return url
        cache_key = f"data:{url}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        if url.startswith("blob:"):
            if self.blob_reader is None:
                raise FetchFailure(url, "blob URLs need a page context")
            data_url = await self.blob_reader(url)
            if not isinstance(data_url, str) or not data_url.startswith("data:"):
                raise FetchFailure(url, "blob could not be read")
            return self.cache.put(cache_key, data_url)
        if not url.startswith(("http:", "https:")):
            raise FetchFailure(url, "Unsupported asset URL")

        try:
            response = await self._fetch_ok(url, credentialed=False)
        except FetchFailure as exc:
            logger.debug("Anonymous fetch failed (%s); retrying with credentials", exc)
            response = await self._fetch_ok(url, credentialed=True)
        content_type = resolve_content_type(response.headers, url, response.body)
        return self.cache.put(cache_key, to_data_url(response.body, content_type))


class HttpFetcher(Fetcher):
    """Fetcher backed by two ``requests`` sessions: with and without cookies."""

    def __init__(
        self,
        cache: Optional[FetchCache[str]] = None,
        blob_reader: Optional[BlobReader] = None,
        timeout: float = 30.0,
        cookies: Iterable[Dict[str, Any]] = (),
    ) -> None:
        super().__init__(cache, blob_reader)
        self.timeout = timeout
        self.session = requests.Session()
        self.anonymous = requests.Session()
        for sess in (self.session, self.anonymous):
            sess.headers["User-Agent"] = USER_AGENT
        for cookie in cookies:
            name = cookie.get("name")
            if not name:
                continue
            self.session.cookies.set(
                name,
                cookie.get("value", ""),
                domain=cookie.get("domain", ""),
                path=cookie.get("path", "/"),
            )

    def fetch(self, url: str, credentialed: bool = False) -> FetchResponse:
        session = self.session if credentialed else self.anonymous
        resp = session.get(url, timeout=self.timeout)
        return FetchResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=resp.content,
        )

    def close(self) -> None:
        self.session.close()
        self.anonymous.close()
