"""Utility helpers for URL keys, filenames and cooperative polling."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import re
import time
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

from .config import DEFAULT_FILENAME_PREFIX

logger = logging.getLogger("framesnap")

PREFIX_SEPARATOR_PATTERN = re.compile(r"[\s/\\:]+")
PREFIX_UNSAFE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")
EXT_UNSAFE_PATTERN = re.compile(r"[^a-zA-Z0-9]+")
SUPPORTED_SCHEMES = ("http", "https", "blob", "data")
DEFAULT_PORTS = {"http": 80, "https": 443}

Predicate = Callable[[], Union[bool, Awaitable[bool]]]


def sanitize_prefix(value: Optional[str], fallback: str = DEFAULT_FILENAME_PREFIX) -> str:
    """Restrict a filename prefix to ``[a-zA-Z0-9._-]``."""
    normalized = PREFIX_SEPARATOR_PATTERN.sub("-", (value or "").strip())
    normalized = PREFIX_UNSAFE_PATTERN.sub("", normalized)
    return normalized or fallback


def make_filename(
    prefix: Optional[str],
    ext: str = "html",
    now: Optional[dt.datetime] = None,
) -> str:
    """Build ``<prefix>-<YYYYMMDD-HHMMSS>.<ext>`` using local time."""
    stamp = (now or dt.datetime.now()).strftime("%Y%m%d-%H%M%S")
    safe_ext = EXT_UNSAFE_PATTERN.sub("", ext or "") or "html"
    return f"{sanitize_prefix(prefix)}-{stamp}.{safe_ext}"


def safe_abs_url(raw: Optional[str], base_url: str) -> Optional[str]:
    """Resolve ``raw`` against ``base_url``; None when it cannot be resolved."""
    value = (raw or "").strip()
    if not value:
        return None
    try:
        resolved = urljoin(base_url, value)
        parts = urlsplit(resolved)
    except ValueError:
        return None
    if not parts.scheme:
        return None
    if parts.scheme in DEFAULT_PORTS and not parts.netloc:
        return None
    if parts.scheme in DEFAULT_PORTS and not parts.path:
        resolved = urlunsplit(parts._replace(path="/"))
    return resolved


def is_supported_asset_url(url: str) -> bool:
    scheme, _, _ = url.partition(":")
    return scheme.lower() in SUPPORTED_SCHEMES


def url_origin(url: str) -> str:
    """Return ``scheme://host[:port]``; blob URLs report their inner origin."""
    try:
        parts = urlsplit(url or "")
        if parts.scheme == "blob":
            return url_origin(parts.path)
        if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
            return ""
        port = parts.port
    except ValueError:
        return ""
    host = parts.hostname
    if port and port != DEFAULT_PORTS[parts.scheme]:
        host = f"{host}:{port}"
    return f"{parts.scheme}://{host}"


def origin_host(url: str) -> str:
    origin = url_origin(url)
    if not origin:
        return ""
    return urlsplit(origin).hostname or ""


def _normalized_parts(url: str):
    parts = urlsplit(url)
    if parts.scheme in DEFAULT_PORTS and not parts.path:
        parts = parts._replace(path="/")
    return parts


def url_key(url: str) -> str:
    """The URL without its fragment."""
    try:
        return urlunsplit(_normalized_parts(url)._replace(fragment=""))
    except ValueError:
        return str(url or "")


def url_key_no_search(url: str) -> str:
    """The URL without its fragment or query string."""
    try:
        return urlunsplit(_normalized_parts(url)._replace(query="", fragment=""))
    except ValueError:
        return str(url or "")


async def wait_for(predicate: Predicate, interval: float, timeout: float) -> bool:
    """Poll ``predicate`` until it is truthy or ``timeout`` seconds elapse.

    The predicate may be a plain callable or a coroutine function. Exceptions
    raised by the predicate count as a negative observation.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            outcome = predicate()
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
            if outcome:
                return True
        except Exception as exc:  # noqa: BLE001 - a failed observation is not fatal
            logger.debug("Polling predicate raised %s", exc)
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(interval)
