"""Serialize a live rendering context and make it safe to reopen standalone."""

from __future__ import annotations

import logging
import re
from typing import Dict, FrozenSet, List, Optional

from bs4 import BeautifulSoup

from . import routines
from .config import ExportConfig, ExportOptions
from .errors import ContentNotReady, FetchFailure
from .fetcher import Fetcher
from .host import Host, HostError
from .models import SnapshotResult, WidgetState
from .utils import safe_abs_url, wait_for
from .widgets import WidgetPreserver

logger = logging.getLogger("framesnap")

MAX_IMPORT_DEPTH = 4
CSP_HTTP_EQUIV = {"content-security-policy", "content-security-policy-report-only"}
NAVIGATION_ATTRIBUTES = ("href", "target", "rel", "download", "ping", "referrerpolicy")
FORM_ATTRIBUTES = ("action", "method", "target")
STASH_ATTRIBUTE = "data-exporter-href"
STYLE_MARKER = "data-framesnap"
STYLE_MARKER_VALUE = "no-interactions"

IMPORT_PATTERN = re.compile(
    r"""@import\s+(?:url\(\s*)?(?:"([^"]+)"|'([^']+)'|([^\s)"';]+))\s*\)?\s*([^;]*);""",
    re.IGNORECASE,
)
CSS_URL_PATTERN = re.compile(r"""url\(\s*(['"]?)([^'")]+)\1\s*\)""", re.IGNORECASE)

NO_INTERACTION_CSS = """
a[data-exporter-href] { text-decoration: none !important; color: inherit !important; cursor: default !important; }
area { cursor: default !important; }
button, input, select, textarea, summary { cursor: default !important; }
summary { pointer-events: none !important; }
iframe { pointer-events: none !important; }
.cursor-pointer { cursor: default !important; pointer-events: none !important; }
[role="button"], [role="tab"], [role="link"], [role="menuitem"] { cursor: default !important; pointer-events: none !important; }
* { animation: none !important; transition: none !important; }
*:hover { transform: none !important; }
*:focus, *:focus-visible { outline: none !important; }
button:disabled, input:disabled, select:disabled, textarea:disabled { opacity: 1 !important; }
""".strip()


def remove_csp_meta(soup: BeautifulSoup) -> int:
    removed = 0
    for meta in soup.find_all("meta", attrs={"http-equiv": True}):
        if str(meta.get("http-equiv", "")).strip().lower() in CSP_HTTP_EQUIV:
            meta.decompose()
            removed += 1
    return removed


def remove_base_elements(soup: BeautifulSoup) -> None:
    for base in soup.find_all("base"):
        base.decompose()


def strip_scripts(soup: BeautifulSoup) -> None:
    """Drop script elements and every inline ``on*`` event handler."""
    for script in soup.find_all("script"):
        script.decompose()
    for tag in soup.find_all(True):
        for name in list(tag.attrs):
            if name.lower().startswith("on"):
                del tag[name]


def _ensure_head(soup: BeautifulSoup):
    if soup.head is not None:
        return soup.head
    head = soup.new_tag("head")
    if soup.html is not None:
        soup.html.insert(0, head)
    else:
        soup.insert(0, head)
    return head


def inject_no_interaction_style(soup: BeautifulSoup) -> bool:
    """Add the freeze stylesheet once; returns False when already present."""
    if soup.find("style", attrs={STYLE_MARKER: STYLE_MARKER_VALUE}) is not None:
        return False
    style = soup.new_tag("style")
    style[STYLE_MARKER] = STYLE_MARKER_VALUE
    style.string = NO_INTERACTION_CSS
    _ensure_head(soup).append(style)
    return True


def neutralize_interactions(soup: BeautifulSoup, options: ExportOptions) -> None:
    """Freeze links, forms, controls and focus so the copy behaves as a picture."""
    for link in soup.find_all("a", href=True):
        href = str(link.get("href", "")).strip()
        if not href:
            continue
        if options.keep_hash_links and href.startswith("#"):
            continue
        link[STASH_ATTRIBUTE] = href
        for name in NAVIGATION_ATTRIBUTES:
            if link.has_attr(name):
                del link[name]

    for area in soup.find_all("area", href=True):
        for name in NAVIGATION_ATTRIBUTES:
            if area.has_attr(name):
                del area[name]

    for form in soup.find_all("form"):
        for name in FORM_ATTRIBUTES:
            if form.has_attr(name):
                del form[name]

    for control in soup.find_all(["input", "select", "textarea", "button"]):
        control["disabled"] = ""

    for tag in soup.find_all(attrs={"contenteditable": True}):
        del tag["contenteditable"]
    for tag in soup.find_all(attrs={"tabindex": True}):
        del tag["tabindex"]

    inject_no_interaction_style(soup)


def absolutize_css_urls(css_text: str, base_url: str, warnings: List[str]) -> str:
    """Rewrite every ``url(...)`` relative to the stylesheet's own location."""

    def _replace(match: re.Match) -> str:
        raw = (match.group(2) or "").strip()
        if not raw or raw.startswith(("data:", "#")):
            return match.group(0)
        absolute = safe_abs_url(raw, base_url)
        if not absolute:
            warnings.append(f"Failed to absolutize CSS url(): {raw}")
            return match.group(0)
        return f'url("{absolute}")'

    return CSS_URL_PATTERN.sub(_replace, css_text)


class StylesheetInliner:
    """Replaces external stylesheet links with ``<style>`` blocks."""

    def __init__(self, fetcher: Fetcher, max_depth: int = MAX_IMPORT_DEPTH) -> None:
        self.fetcher = fetcher
        self.max_depth = max_depth

    async def inline_imports(
        self,
        css_text: str,
        base_url: str,
        warnings: List[str],
        depth: int = 0,
        ancestors: Optional[FrozenSet[str]] = None,
    ) -> str:
        """Inline ``@import`` rules recursively.

        ``ancestors`` holds the sheets on the current import chain; a sheet
        imported from two siblings is inlined in both places.
        """
        if depth > self.max_depth:
            return css_text
        ancestors = ancestors if ancestors is not None else frozenset({base_url})

        pieces: List[str] = []
        last = 0
        for match in IMPORT_PATTERN.finditer(css_text):
            pieces.append(css_text[last : match.start()])
            pieces.append(
                await self._inline_import(match, base_url, warnings, depth, ancestors)
            )
            last = match.end()
        if not pieces:
            return css_text
        pieces.append(css_text[last:])
        return "".join(pieces)

    async def _inline_import(
        self,
        match: re.Match,
        base_url: str,
        warnings: List[str],
        depth: int,
        ancestors: FrozenSet[str],
    ) -> str:
        raw = match.group(1) or match.group(2) or match.group(3) or ""
        absolute = safe_abs_url(raw, base_url)
        if not absolute:
            return f"/* skipped invalid @import: {raw} */"
        if absolute in ancestors:
            return f"/* skipped circular @import: {absolute} */"
        try:
            imported = await self.fetcher.fetch_text(absolute)
        except FetchFailure as exc:
            warnings.append(f"Failed to fetch @import CSS: {absolute} ({exc})")
            return f"/* failed to inline @import: {absolute} */"
        inlined = await self.inline_imports(
            imported, absolute, warnings, depth + 1, ancestors | {absolute}
        )
        absolutized = absolutize_css_urls(inlined, absolute, warnings)
        media = (match.group(4) or "").strip()
        if media:
            return f"@media {media} {{\n{absolutized}\n}}"
        return f"\n/* inlined @import {absolute} */\n{absolutized}\n"

    async def inline_links(self, soup: BeautifulSoup, base_url: str, warnings: List[str]) -> int:
        """Inline every ``link[rel~=stylesheet]``; returns how many were replaced."""
        replaced = 0
        for link in soup.select('link[rel~="stylesheet"][href]'):
            absolute = safe_abs_url(link.get("href"), base_url)
            if not absolute:
                continue
            try:
                css_text = await self.fetcher.fetch_text(absolute)
            except FetchFailure as exc:
                warnings.append(f"Failed to fetch CSS: {absolute} ({exc})")
                continue
            inlined = await self.inline_imports(css_text, absolute, warnings)
            style = soup.new_tag("style")
            style["data-exported-from"] = absolute
            style.string = absolutize_css_urls(inlined, absolute, warnings)
            link.replace_with(style)
            replaced += 1
        return replaced


async def transform_markup(
    markup: str,
    base_url: str,
    options: ExportOptions,
    fetcher: Fetcher,
    widget_state: Optional[WidgetState] = None,
    preserver: Optional[WidgetPreserver] = None,
) -> SnapshotResult:
    """Apply the snapshot steps to already-serialized markup, in order."""
    warnings: List[str] = []
    soup = BeautifulSoup(markup, "html.parser")

    stats: Dict[str, int] = {"cspRemoved": remove_csp_meta(soup)}
    remove_base_elements(soup)
    if not options.keep_scripts:
        strip_scripts(soup)
    if options.keep_scripts and widget_state is not None:
        (preserver or WidgetPreserver()).patch(soup, widget_state, warnings)
    if options.disable_interactions:
        neutralize_interactions(soup, options)

    stats["stylesheetsInlined"] = await StylesheetInliner(fetcher).inline_links(
        soup, base_url, warnings
    )
    return SnapshotResult(markup=str(soup), warnings=warnings, stats=stats)


class Snapshotter:
    """Captures the resolved context's document through the host."""

    def __init__(
        self,
        host: Host,
        fetcher: Fetcher,
        config: Optional[ExportConfig] = None,
        preserver: Optional[WidgetPreserver] = None,
    ) -> None:
        self.host = host
        self.fetcher = fetcher
        self.config = config or ExportConfig()
        self.preserver = preserver or WidgetPreserver()

    async def wait_until_ready(self, context_id: int) -> str:
        """Wait for rendered content; returns the context URL."""
        observed: Dict[str, str] = {}

        async def _has_content() -> bool:
            stats = await self.host.probe(context_id, routines.FRAME_STATS)
            if not isinstance(stats, dict):
                return False
            observed["href"] = str(stats.get("href") or "")
            return bool(stats.get("hasNonTrivialNodes"))

        ready = await wait_for(
            _has_content, self.config.content_interval, self.config.content_timeout
        )
        if not ready:
            raise ContentNotReady(
                "App content not detected in the app frame yet. "
                "Wait for it to load, then try Export again."
            )
        return observed.get("href", "")

    async def serialize(self, context_id: int) -> str:
        try:
            markup = await self.host.probe(context_id, routines.SERIALIZE)
        except HostError as exc:
            raise ContentNotReady(f"Could not serialize the app document: {exc}") from exc
        if not isinstance(markup, str) or not markup:
            raise ContentNotReady("The app document serialized to nothing")
        return markup

    async def snapshot(
        self,
        context_id: int,
        options: ExportOptions,
        widget_state: Optional[WidgetState] = None,
        base_url: Optional[str] = None,
    ) -> SnapshotResult:
        base = base_url or await self.wait_until_ready(context_id)
        markup = await self.serialize(context_id)
        logger.debug("Serialized %d characters from context %s", len(markup), context_id)
        result = await transform_markup(
            markup, base, options, self.fetcher, widget_state, self.preserver
        )
        logger.info(
            "Snapshot ready (%d stylesheet(s) inlined, %d warning(s))",
            result.stats.get("stylesheetsInlined", 0),
            len(result.warnings),
        )
        return result
