"""Best-effort preservation of script-driven widgets when scripts are kept.

Some apps swap a single image when buttons in a control group are clicked,
and their scripts point the image back at an endpoint that only works inside
the host page. Before serializing, every state is captured as a data URL;
afterwards the preserved script text is patched so the saved copy shows the
captured images and opens on the state that was live at export time.

Each recognised layout is a :class:`WidgetPattern`. A pattern that does not
match simply returns nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from . import routines
from .errors import FramesnapError, PatchSkipped
from .fetcher import Fetcher
from .host import Host, HostError
from .images import from_data_url, png_data_url
from .models import WidgetState
from .utils import wait_for

logger = logging.getLogger("framesnap")

MIN_CAPTURED_STATES = 2
RESTORE_TIMEOUT = 10.0


class WidgetPattern:
    """A recognised widget layout: how to capture its states and patch its script."""

    kind = ""

    async def capture(
        self,
        host: Host,
        context_id: int,
        fetcher: Fetcher,
        warnings: List[str],
        interval: float = 0.12,
        timeout: float = 20.0,
    ) -> Optional[WidgetState]:
        raise NotImplementedError

    def patch(self, soup: BeautifulSoup, state: WidgetState, warnings: List[str]) -> bool:
        raise NotImplementedError


class ClassSelectorPattern(WidgetPattern):
    """Buttons in ``#class-nav-container`` swap ``img#class-image`` and ``#class-name``."""

    kind = "class-nav-container"
    selectors = {
        "container": "#class-nav-container",
        "image": "#class-image",
        "label": "#class-name",
    }
    image_id = "class-image"
    script_markers = ("const classes", "class-image")

    async def _inspect(self, host: Host, context_id: int) -> Optional[Dict[str, Any]]:
        info = await host.probe(context_id, routines.WIDGET_INSPECT, self.selectors)
        return info if isinstance(info, dict) else None

    async def _click(self, host: Host, context_id: int, index: int) -> bool:
        clicked = await host.probe(
            context_id, routines.WIDGET_CLICK, {"selectors": self.selectors, "index": index}
        )
        return bool(clicked)

    async def _capture_image(
        self,
        host: Host,
        context_id: int,
        src: str,
        fetcher: Fetcher,
    ) -> str:
        """Canvas export first; the resource itself, re-encoded as PNG, otherwise."""
        try:
            captured = await host.probe(context_id, routines.CAPTURE_IMAGE, self.selectors)
        except HostError as exc:
            logger.debug("Canvas capture unavailable: %s", exc)
            captured = None
        if isinstance(captured, str) and captured.startswith("data:"):
            return captured
        if not src:
            raise PatchSkipped("Image has no src")
        data, content_type = from_data_url(await fetcher.fetch_data_url(src))
        return png_data_url(data, content_type)

    async def capture(
        self,
        host: Host,
        context_id: int,
        fetcher: Fetcher,
        warnings: List[str],
        interval: float = 0.12,
        timeout: float = 20.0,
    ) -> Optional[WidgetState]:
        info = await self._inspect(host, context_id)
        if not info:
            return None
        labels = [str(label) for label in info.get("buttons") or []]
        if len(labels) < MIN_CAPTURED_STATES:
            return None

        initial_label = str(info.get("label") or "").strip()
        initial_index = -1
        if initial_label:
            initial_index = next(
                (i for i, text in enumerate(labels) if initial_label in text), -1
            )

        images: Dict[str, str] = {}
        names_by_index = [""] * len(labels)
        latest: Dict[str, Any] = dict(info)

        async def _initial_loaded() -> bool:
            state = await self._inspect(host, context_id)
            latest.update(state or {})
            return bool(state and state.get("ready"))

        # The selected button may not re-fire when clicked, so grab it first.
        if initial_label:
            if not await wait_for(_initial_loaded, interval, timeout):
                warnings.append("Preload: timeout waiting for the initial widget image to load")
            else:
                try:
                    images[initial_label] = await self._capture_image(
                        host, context_id, str(latest.get("src") or ""), fetcher
                    )
                    if initial_index >= 0:
                        names_by_index[initial_index] = initial_label
                except (FramesnapError, ValueError) as exc:
                    warnings.append(
                        f'Preload: failed to capture initial image for "{initial_label}" ({exc})'
                    )

        for index, button_label in enumerate(labels):
            if index == initial_index and initial_label in images:
                continue
            before = await self._inspect(host, context_id) or {}
            previous_src = str(before.get("src") or "")
            if not await self._click(host, context_id, index):
                warnings.append(f"Preload: widget control #{index + 1} disappeared")
                continue

            async def _swapped() -> bool:
                state = await self._inspect(host, context_id)
                if not state:
                    return False
                latest.clear()
                latest.update(state)
                src = str(state.get("src") or "")
                return bool(src) and src != previous_src and bool(state.get("ready"))

            if not await wait_for(_swapped, interval, timeout):
                warnings.append(
                    f"Preload: timeout waiting for widget image #{index + 1}/{len(labels)}"
                )
                continue

            current = str(latest.get("label") or "").strip() or button_label
            if current and not names_by_index[index]:
                names_by_index[index] = current
            try:
                data_url = await self._capture_image(
                    host, context_id, str(latest.get("src") or ""), fetcher
                )
            except (FramesnapError, ValueError) as exc:
                warnings.append(f'Preload: failed to capture image for "{current}" ({exc})')
                continue
            if current:
                images[current] = data_url

        if initial_index >= 0:
            await self._restore(host, context_id, initial_index, initial_label, interval)

        if len(images) < MIN_CAPTURED_STATES:
            logger.debug("Widget %s: only %d state(s) captured; abstaining", self.kind, len(images))
            return None
        resolved_index = (
            names_by_index.index(initial_label) if initial_label in names_by_index else initial_index
        )
        return WidgetState(
            kind=self.kind,
            initial_label=initial_label,
            initial_index=resolved_index,
            images_by_label=images,
        )

    async def _restore(
        self,
        host: Host,
        context_id: int,
        index: int,
        label: str,
        interval: float,
    ) -> None:
        try:
            await self._click(host, context_id, index)
        except HostError as exc:
            logger.debug("Could not restore widget state: %s", exc)
            return

        async def _restored() -> bool:
            state = await self._inspect(host, context_id)
            return bool(state and state.get("label") == label and state.get("ready"))

        await wait_for(_restored, interval, RESTORE_TIMEOUT)

    def patch(self, soup: BeautifulSoup, state: WidgetState, warnings: List[str]) -> bool:
        patched_any = False
        for script in soup.find_all("script"):
            if script.get("src"):
                continue
            text = script.string or ""
            if not all(marker in text for marker in self.script_markers):
                continue
            patched = self.patch_script_text(text, state)
            if patched != text:
                script.string = patched
                patched_any = True

        if not patched_any:
            raise PatchSkipped("no preserved script matched the widget layout")

        initial_data = state.images_by_label.get(state.initial_label)
        image = soup.find("img", id=self.image_id)
        if initial_data and image is not None:
            image["src"] = initial_data
            image["style"] = f"{image.get('style', '')};opacity:1;".lstrip(";")
        warnings.append(
            f"Keep interactivity: embedded {len(state.images_by_label)} widget images as data URLs."
        )
        return True

    @staticmethod
    def patch_script_text(text: str, state: WidgetState) -> str:
        """Substitute captured images and the initial index into script source."""
        patched = text
        for label, data_url in state.images_by_label.items():
            if not label or not data_url:
                continue
            pattern = re.compile(
                r"(name\s*:\s*['\"]" + re.escape(label) + r"['\"][\s\S]*?image\s*:\s*['\"])([^'\"]*)(['\"])"
            )
            patched = pattern.sub(
                lambda m, data=data_url: m.group(1) + data + m.group(3), patched, count=1
            )

        index = state.initial_index
        if index >= 0:
            patched = re.sub(
                r"(let|var)\s+currentClassIndex\s*=\s*0\s*;",
                lambda m: f"{m.group(1)} currentClassIndex = {index};",
                patched,
                count=1,
            )
            patched = re.sub(
                r"selectClass\(\s*0\s*\)\s*;?",
                f"selectClass({index});",
                patched,
                count=1,
            )
        return patched


DEFAULT_PATTERNS = (ClassSelectorPattern(),)


class WidgetPreserver:
    """Tries each registered pattern; failures only ever produce warnings."""

    def __init__(self, patterns: Optional[Iterable[WidgetPattern]] = None) -> None:
        self.patterns = list(patterns) if patterns is not None else list(DEFAULT_PATTERNS)

    async def capture(
        self,
        host: Host,
        context_id: int,
        fetcher: Fetcher,
        warnings: List[str],
        interval: float = 0.12,
        timeout: float = 20.0,
    ) -> Optional[WidgetState]:
        for pattern in self.patterns:
            try:
                state = await pattern.capture(
                    host, context_id, fetcher, warnings, interval, timeout
                )
            except FramesnapError as exc:
                warnings.append(f"Preload interactive images failed: {exc}")
                continue
            if state is not None:
                logger.info(
                    "Captured %d state(s) of widget %s",
                    len(state.images_by_label),
                    state.kind,
                )
                return state
        return None

    def patch(self, soup: BeautifulSoup, state: WidgetState, warnings: List[str]) -> bool:
        pattern = next((p for p in self.patterns if p.kind == state.kind), None)
        if pattern is None:
            warnings.append(f"Widget patch skipped: no pattern named {state.kind}")
            return False
        try:
            return pattern.patch(soup, state, warnings)
        except PatchSkipped as exc:
            warnings.append(f"Widget patch skipped: {exc}")
            return False
