"""Configuration objects and constants for the exporter."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple
from urllib.parse import urlparse

DEFAULT_TRUSTED_HOST_SUFFIX = "scf.usercontent.goog"
DEFAULT_SHIM_PATH_MARKER = "/generative-ui-response/"
DEFAULT_FILENAME_PREFIX = "framesnap-export"
TRUSTED_HOST_ENV = "FRAMESNAP_TRUSTED_HOST"

FONT_EXTENSIONS = (".woff2", ".woff", ".ttf", ".otf")

# (host, lower-cased path fragment) pairs known to serve icon glyphs.
ICON_FONT_ALLOW_LIST: Tuple[Tuple[str, str], ...] = (
    ("fonts.gstatic.com", "/materialsymbols"),
    ("fonts.gstatic.com", "/materialicons"),
    ("use.fontawesome.com", "/webfonts/"),
    ("cdnjs.cloudflare.com", "/font-awesome/"),
)


class InlineFontsMode(str, Enum):
    ALL = "all"
    ICONS = "icons"
    NONE = "none"


def default_trusted_host_suffix() -> str:
    """Return the trusted host suffix, honouring the environment override."""
    override = os.getenv(TRUSTED_HOST_ENV, "").strip().lstrip(".")
    return override or DEFAULT_TRUSTED_HOST_SUFFIX


@dataclass(frozen=True)
class TrustedOrigin:
    """Host-suffix pattern identifying the sandboxed app frames."""

    host_suffix: str = DEFAULT_TRUSTED_HOST_SUFFIX
    path_marker: str = DEFAULT_SHIM_PATH_MARKER

    def matches_host(self, host: str) -> bool:
        host = (host or "").lower()
        suffix = self.host_suffix.lower()
        return host == suffix or host.endswith("." + suffix)

    def matches(self, url: str, origin_host: str = "") -> bool:
        """True when the origin host (or, failing that, the URL) is trusted."""
        if origin_host and self.matches_host(origin_host):
            return True
        if not url:
            return False
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if parsed.scheme == "blob":
            try:
                inner = urlparse(parsed.path)
            except ValueError:
                return False
            return self.matches_host(inner.hostname or "")
        if parsed.scheme in ("http", "https"):
            return self.matches_host(parsed.hostname or "")
        return False

    def is_shim_url(self, url: str) -> bool:
        return self.matches(url) and self.path_marker in (url or "")


@dataclass
class ExportOptions:
    """Per-export switches, normalised the same way for every entry point."""

    keep_scripts: bool = False
    disable_interactions: bool = True
    keep_hash_links: bool = True
    inline_fonts_mode: InlineFontsMode = InlineFontsMode.ICONS

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "ExportOptions":
        opts = raw if isinstance(raw, Mapping) else {}
        keep_scripts = opts.get("keepScripts") is True
        inline_fonts = opts.get("inlineFonts")
        if inline_fonts is True:
            mode = InlineFontsMode.ALL
        elif inline_fonts is False:
            mode = InlineFontsMode.NONE
        elif inline_fonts in {m.value for m in InlineFontsMode}:
            mode = InlineFontsMode(inline_fonts)
        else:
            mode = InlineFontsMode.ICONS
        # Kept scripts default to a live copy; an explicit boolean still wins.
        disable_interactions = opts.get("disableInteractions")
        if not isinstance(disable_interactions, bool):
            disable_interactions = not keep_scripts
        return cls(
            keep_scripts=keep_scripts,
            disable_interactions=disable_interactions,
            keep_hash_links=opts.get("keepHashLinks") is not False,
            inline_fonts_mode=mode,
        )

    def to_mapping(self) -> dict:
        return {
            "keepScripts": self.keep_scripts,
            "disableInteractions": self.disable_interactions,
            "keepHashLinks": self.keep_hash_links,
            "inlineFonts": self.inline_fonts_mode.value,
        }


@dataclass
class ExportConfig:
    """Top-level settings that control resolution, capture and output."""

    output_root: Path = Path("output")
    filename_prefix: str = DEFAULT_FILENAME_PREFIX
    trusted_host_suffix: str = DEFAULT_TRUSTED_HOST_SUFFIX
    shim_path_marker: str = DEFAULT_SHIM_PATH_MARKER
    resolve_timeout: float = 10.0
    resolve_interval: float = 0.25
    content_timeout: float = 10.0
    content_interval: float = 0.2
    widget_timeout: float = 20.0
    widget_interval: float = 0.12
    fetch_concurrency: int = 6
    fetch_timeout: float = 30.0
    cache_max_entries: Optional[int] = None
    cache_ttl: Optional[float] = None
    navigation_timeout: float = 30.0
    wait_after_load: float = 1.0

    @property
    def trusted(self) -> TrustedOrigin:
        return TrustedOrigin(self.trusted_host_suffix, self.shim_path_marker)
