"""Embed every external image and font a snapshot references as data URLs."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from .config import FONT_EXTENSIONS, ICON_FONT_ALLOW_LIST, ExportOptions, InlineFontsMode
from .errors import FetchFailure
from .fetcher import Fetcher
from .models import AssetKind, AssetReference, ExportStats, InlinedAsset, InlineResult
from .snapshot import CSS_URL_PATTERN
from .utils import is_supported_asset_url, safe_abs_url

logger = logging.getLogger("framesnap")

DEFAULT_CONCURRENCY = 6
RESPONSIVE_ATTRIBUTES = ("srcset", "sizes", "loading", "decoding")
# Attributes lazy-loading scripts read to put the external source back.
DEFERRED_SOURCE_ATTRIBUTES = (
    "data-src",
    "data-srcset",
    "data-lazy-src",
    "data-lazy-srcset",
    "data-original",
    "data-url",
    "go-data-src",
    "go-data-srcset",
)


def _path(url: str) -> str:
    try:
        return urlsplit(url).path.lower()
    except ValueError:
        return ""


def is_font_url(url: str) -> bool:
    return _path(url).endswith(FONT_EXTENSIONS)


def is_icon_font_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    host = (parts.hostname or "").lower()
    path = parts.path.lower()
    return any(host == allowed and fragment in path for allowed, fragment in ICON_FONT_ALLOW_LIST)


def classify(url: str) -> AssetKind:
    if is_font_url(url):
        return AssetKind.FONT
    if _path(url).endswith(".css"):
        return AssetKind.STYLESHEET
    return AssetKind.IMAGE


def should_inline(reference: AssetReference, options: ExportOptions) -> bool:
    """Apply the font policy; non-font assets are always inlined."""
    if reference.kind is not AssetKind.FONT:
        return True
    mode = options.inline_fonts_mode
    if mode is InlineFontsMode.ALL:
        return True
    if mode is InlineFontsMode.NONE:
        return False
    return is_icon_font_url(reference.absolute_url)


def pick_img_url(img) -> Optional[str]:
    """``src`` if present, else the last candidate of ``srcset``."""
    src = str(img.get("src") or "").strip()
    if src:
        return src
    srcset = str(img.get("srcset") or "").strip()
    if not srcset:
        return None
    parts = [part.strip() for part in srcset.split(",") if part.strip()]
    if not parts:
        return None
    return parts[-1].split()[0] or None


def extract_css_url_candidates(text: str) -> List[str]:
    found: List[str] = []
    for match in CSS_URL_PATTERN.finditer(text or ""):
        raw = (match.group(2) or "").strip()
        if not raw or raw.startswith(("data:", "#")):
            continue
        found.append(raw)
    return found


def rewrite_css_urls(text: str, base_url: str, assets: Mapping[str, InlinedAsset]) -> str:
    def _replace(match: re.Match) -> str:
        raw = (match.group(2) or "").strip()
        if not raw or raw.startswith(("data:", "#")):
            return match.group(0)
        absolute = safe_abs_url(raw, base_url)
        asset = assets.get(absolute) if absolute else None
        if asset is None:
            return match.group(0)
        return f'url("{asset.encoded}")'

    return CSS_URL_PATTERN.sub(_replace, text)


def _content_type_of(data_url: str) -> str:
    header = data_url[5:].split(",", 1)[0]
    return header.split(";")[0] or "application/octet-stream"


class AssetInliner:
    """Discover, fetch (bounded concurrency) and rewrite asset references."""

    def __init__(self, fetcher: Fetcher, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.fetcher = fetcher
        self.concurrency = max(1, concurrency)

    def discover(
        self,
        soup: BeautifulSoup,
        base_url: str,
        options: ExportOptions,
    ) -> List[AssetReference]:
        """Unique qualifying references, in document order."""
        raw_urls: List[str] = []
        for img in soup.find_all("img"):
            picked = pick_img_url(img)
            if picked:
                raw_urls.append(picked)
        for tag in soup.find_all(attrs={"style": True}):
            raw_urls.extend(extract_css_url_candidates(str(tag.get("style") or "")))
        for style in soup.find_all("style"):
            raw_urls.extend(extract_css_url_candidates(style.string or ""))

        references: Dict[str, AssetReference] = {}
        for raw in raw_urls:
            absolute = safe_abs_url(raw, base_url)
            if not absolute or absolute in references:
                continue
            if not is_supported_asset_url(absolute) or absolute.startswith("data:"):
                continue
            reference = AssetReference(absolute, classify(absolute), base_url)
            if should_inline(reference, options):
                references[absolute] = reference
            else:
                logger.debug("Font policy %s skips %s", options.inline_fonts_mode.value, absolute)
        return list(references.values())

    async def fetch_all(
        self,
        references: Iterable[AssetReference],
    ) -> Tuple[Dict[str, InlinedAsset], List[str]]:
        queue: "asyncio.Queue[str]" = asyncio.Queue()
        for reference in references:
            queue.put_nowait(reference.absolute_url)
        assets: Dict[str, InlinedAsset] = {}
        failures: List[str] = []

        async def _worker() -> None:
            while True:
                try:
                    url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    encoded = await self.fetcher.fetch_data_url(url)
                except FetchFailure as exc:
                    logger.debug("Failed to inline %s: %s", url, exc)
                    failures.append(f"{url} ({exc})")
                    continue
                assets[url] = InlinedAsset(url, encoded, _content_type_of(encoded))

        workers = min(self.concurrency, queue.qsize())
        await asyncio.gather(*(_worker() for _ in range(workers)))
        return assets, failures

    def rewrite(
        self,
        soup: BeautifulSoup,
        base_url: str,
        assets: Mapping[str, InlinedAsset],
    ) -> None:
        for img in soup.find_all("img"):
            absolute = safe_abs_url(pick_img_url(img), base_url)
            asset = assets.get(absolute) if absolute else None
            if asset is None:
                continue
            img["src"] = asset.encoded
            for name in RESPONSIVE_ATTRIBUTES:
                if img.has_attr(name):
                    del img[name]
            for name in DEFERRED_SOURCE_ATTRIBUTES:
                if img.has_attr(name):
                    img[name] = asset.encoded

        for tag in soup.find_all(attrs={"style": True}):
            style = str(tag.get("style") or "")
            rewritten = rewrite_css_urls(style, base_url, assets)
            if rewritten != style:
                tag["style"] = rewritten

        for style_tag in soup.find_all("style"):
            text = style_tag.string or ""
            rewritten = rewrite_css_urls(text, base_url, assets)
            if rewritten != text:
                style_tag.string = rewritten

    async def inline(self, markup: str, base_url: str, options: ExportOptions) -> InlineResult:
        soup = BeautifulSoup(markup, "html.parser")
        references = self.discover(soup, base_url, options)
        logger.info("Inlining %d asset(s)", len(references))
        assets, failures = await self.fetch_all(references)
        self.rewrite(soup, base_url, assets)

        warnings: List[str] = []
        if failures:
            warnings.append(f"Some assets failed to inline ({len(failures)}).")
        stats = ExportStats(
            asset_candidates=len(references),
            inlined=len(assets),
            failed=len(failures),
        )
        return InlineResult(markup=str(soup), stats=stats, warnings=warnings)
