"""Content-type detection and embedded-representation encoding."""

from __future__ import annotations

import base64
import io
import logging
from typing import Mapping, Optional, Tuple
from urllib.parse import unquote_to_bytes, urlsplit

from filetype import guess
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("framesnap")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

EXTENSION_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".avif": "image/avif",
    ".woff2": "font/woff2",
    ".woff": "font/woff",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".css": "text/css",
    ".js": "text/javascript",
}


def guess_type_from_url(url: str) -> Optional[str]:
    """Guess a MIME type from the URL path's extension."""
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return None
    for extension, mime in EXTENSION_TYPES.items():
        if path.endswith(extension):
            return mime
    return None


def detect_content_type(data: bytes) -> Optional[str]:
    """Detect a MIME type from the file signature using filetype."""
    kind = guess(data) if data else None
    return kind.mime if kind else None


def resolve_content_type(
    headers: Mapping[str, str],
    url: str,
    data: bytes = b"",
) -> str:
    """Header first, then URL extension, then file signature."""
    header = ""
    for name, value in headers.items():
        if name.lower() == "content-type":
            header = value
            break
    mime = header.split(";")[0].strip().lower()
    if mime:
        return mime
    return guess_type_from_url(url) or detect_content_type(data) or DEFAULT_CONTENT_TYPE


def to_data_url(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def from_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a data URL into its bytes and MIME type."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a data URL")
    header, payload = data_url[5:].split(",", 1)
    parts = header.split(";")
    content_type = parts[0] or "text/plain"
    if "base64" in parts[1:]:
        return base64.b64decode(payload), content_type
    return unquote_to_bytes(payload), content_type


def normalize_to_png(data: bytes) -> bytes:
    """Re-encode a raster image as PNG, the way a canvas export would."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA")
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Not a decodable raster image: {exc}") from exc
    logger.debug("Re-encoded %d byte image as PNG", len(data))
    return buffer.getvalue()


def png_data_url(data: bytes, content_type: str = "") -> str:
    """PNG data URL for raster bytes; SVG is embedded as-is."""
    if content_type == "image/svg+xml":
        return to_data_url(data, content_type)
    return to_data_url(normalize_to_png(data), "image/png")
