"""Host capabilities: enumerate, probe and inject into rendering contexts."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import (
    Error as PlaywrightError,
    Frame,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import ExportConfig
from .errors import FramesnapError, InjectionFailure, PermissionUnavailable
from .models import ContextInfo
from .routines import ROUTINES

logger = logging.getLogger("framesnap")


class HostError(FramesnapError):
    """A routine could not run in the requested context."""


class Host:
    """Interface to the browser hosting the nested rendering contexts.

    Implementations report contexts with integer ids; ``root_context_id`` is
    the outermost document.
    """

    root_context_id: int = 0

    async def enumerate_contexts(self) -> List[ContextInfo]:
        raise NotImplementedError

    async def probe(self, context_id: int, routine: str, arg: Any = None) -> Any:
        raise NotImplementedError

    async def inject(self, context_id: int, module: str) -> None:
        raise NotImplementedError

    async def page_url(self) -> str:
        raise NotImplementedError

    async def cookies(self) -> List[Dict[str, Any]]:
        return []

    async def capture_whole_page_archive(self) -> bytes:
        raise PermissionUnavailable("Whole-page capture is not supported by this host")


class PlaywrightHost(Host):
    """Host backed by a live Playwright page."""

    def __init__(self, page: Page) -> None:
        self.page = page
        self._ids: Dict[Frame, int] = {}
        self._frames: Dict[int, Frame] = {}

    def _context_id(self, frame: Frame) -> int:
        if frame not in self._ids:
            context_id = 0 if frame == self.page.main_frame else len(self._ids) + 1
            self._ids[frame] = context_id
            self._frames[context_id] = frame
        return self._ids[frame]

    def _frame(self, context_id: int) -> Frame:
        if context_id == self.root_context_id:
            return self.page.main_frame
        frame = self._frames.get(context_id)
        if frame is None or frame.is_detached():
            raise HostError(f"Rendering context {context_id} is no longer available")
        return frame

    async def enumerate_contexts(self) -> List[ContextInfo]:
        self._context_id(self.page.main_frame)
        contexts: List[ContextInfo] = []
        for frame in self.page.frames:
            parent = frame.parent_frame
            contexts.append(
                ContextInfo(
                    context_id=self._context_id(frame),
                    url=frame.url or "",
                    parent_context_id=self._context_id(parent) if parent else None,
                )
            )
        return contexts

    async def probe(self, context_id: int, routine: str, arg: Any = None) -> Any:
        script = ROUTINES.get(routine)
        if script is None:
            raise KeyError(f"Unknown routine: {routine}")
        frame = self._frame(context_id)
        try:
            return await frame.evaluate(script, arg)
        except PlaywrightError as exc:
            raise HostError(f"Routine {routine} failed in context {context_id}: {exc}") from exc

    async def inject(self, context_id: int, module: str) -> None:
        try:
            frame = self._frame(context_id)
            await frame.evaluate(module)
        except (PlaywrightError, HostError) as exc:
            raise InjectionFailure(
                f"Failed to inject exporter into the app frame (context={context_id}). {exc}"
            ) from exc

    async def page_url(self) -> str:
        return self.page.url

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(await self.page.context.cookies())

    async def capture_whole_page_archive(self) -> bytes:
        try:
            session = await self.page.context.new_cdp_session(self.page)
            result = await session.send("Page.captureSnapshot", {"format": "mhtml"})
        except PlaywrightError as exc:
            raise PermissionUnavailable(f"Page capture unavailable: {exc}") from exc
        data = result.get("data") if isinstance(result, dict) else None
        if not data:
            raise PermissionUnavailable("Page capture returned an empty archive")
        # CDP returns the MHTML document as text.
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)


@asynccontextmanager
async def open_page(url: str, config: ExportConfig) -> AsyncIterator[PlaywrightHost]:
    """Launch Chromium, load ``url`` and yield a host bound to the page."""
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)
        try:
            page = await browser.new_page()
            page.set_default_navigation_timeout(config.navigation_timeout * 1000)
            logger.info("Loading %s", url)
            try:
                await page.goto(url, wait_until="networkidle")
            except PlaywrightTimeoutError:
                logger.warning("Network did not settle for %s; continuing", url)
            if config.wait_after_load:
                await page.wait_for_timeout(int(config.wait_after_load * 1000))
            yield PlaywrightHost(page)
        finally:
            await browser.close()


def describe_context(context: Optional[ContextInfo]) -> str:
    if context is None:
        return "(none)"
    shown = context.url or "(url hidden)"
    return f"context={context.context_id} parent={context.parent_context_id} url={shown}"
