"""Request/response message contract around an :class:`Exporter`.

Every reply is an envelope: ``{"ok": True, ...}`` on success or
``{"ok": False, "error": "..."}`` on failure.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping

import requests

from .config import ExportOptions
from .errors import FramesnapError
from .exporter import Exporter

logger = logging.getLogger("framesnap")

START_EXPORT = "START_EXPORT"
PING = "PING"
EXPORT = "EXPORT"
FETCH_TEXT = "FETCH_TEXT"
FETCH_DATA_URL = "FETCH_DATA_URL"
SAVE_ARCHIVE = "SAVE_ARCHIVE"

Handler = Callable[[Mapping[str, Any]], Awaitable[Dict[str, Any]]]


class MessageDispatcher:
    def __init__(self, exporter: Exporter) -> None:
        self.exporter = exporter
        self._handlers: Dict[str, Handler] = {
            START_EXPORT: self._start_export,
            PING: self._ping,
            EXPORT: self._export,
            FETCH_TEXT: self._fetch_text,
            FETCH_DATA_URL: self._fetch_data_url,
            SAVE_ARCHIVE: self._save_archive,
        }

    async def handle(self, message: Any) -> Dict[str, Any]:
        if not isinstance(message, Mapping) or not isinstance(message.get("type"), str):
            return {"ok": False, "error": "Malformed message"}
        handler = self._handlers.get(message["type"])
        if handler is None:
            return {"ok": False, "error": f"Unknown message type: {message['type']}"}
        try:
            return await handler(message)
        except (FramesnapError, requests.RequestException, ValueError) as exc:
            logger.warning("%s failed: %s", message["type"], exc)
            return {"ok": False, "error": str(exc)}

    def _context_id(self, message: Mapping[str, Any]) -> int:
        context_id = message.get("contextId", self.exporter.host.root_context_id)
        if not isinstance(context_id, int):
            raise ValueError("contextId must be an integer")
        return context_id

    async def _start_export(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        options = ExportOptions.from_mapping(message.get("options"))
        result = await self.exporter.start_export(options, message.get("filenameHint"))
        return {"ok": True, "result": result.to_mapping()}

    async def _ping(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = await self.exporter.ping(self._context_id(message))
        return {"ok": True, "contextMetadata": metadata}

    async def _export(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        options = ExportOptions.from_mapping(message.get("options"))
        result = await self.exporter.export_context(
            self._context_id(message), options, message.get("filenameHint")
        )
        return {"ok": True, "result": result.to_mapping()}

    async def _fetch_text(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        fetcher = await self.exporter.get_fetcher()
        text = await fetcher.fetch_text(str(message.get("url") or ""))
        return {"ok": True, "text": text}

    async def _fetch_data_url(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        fetcher = await self.exporter.get_fetcher()
        encoded = await fetcher.fetch_data_url(str(message.get("url") or ""))
        return {"ok": True, "embeddedRepresentation": encoded}

    async def _save_archive(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        path = await self.exporter.save_archive(message.get("filenameHint"))
        return {"ok": True, "filename": path.name}
