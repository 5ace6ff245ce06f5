"""Locate the nested rendering context that hosts the app surface.

Resolution runs in tiers. Tier 1 matches URL keys of the live context tree
against the frames advertised by the top-level document. Tier 2 probes each
nested context directly, which survives URL redaction. Tier 3 is a content
heuristic the caller falls back to once the polling window is exhausted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Set

from . import routines
from .config import TrustedOrigin
from .enumerator import scan_candidate_frames
from .errors import PermissionUnavailable
from .host import Host, HostError, describe_context
from .models import (
    ContextInfo,
    ProbeResult,
    ResolutionMethod,
    ResolutionResult,
    ShimReference,
)
from .utils import origin_host, url_key, url_key_no_search, url_origin

logger = logging.getLogger("framesnap")

MAX_DIAGNOSTIC_LINES = 20


def shim_key_areas(shim_refs: Sequence[ShimReference]) -> Dict[str, float]:
    """Map every lookup key of the advertised frames to the frame's area."""
    areas: Dict[str, float] = {}
    for ref in shim_refs:
        if not ref.src:
            continue
        keys = (ref.origin or url_origin(ref.src), url_key(ref.src), url_key_no_search(ref.src))
        for key in keys:
            if key and (key not in areas or areas[key] < ref.area):
                areas[key] = ref.area
    return areas


def context_keys(url: str, origin: str = "") -> List[str]:
    keys = [origin or url_origin(url), url_key(url), url_key_no_search(url)]
    return [key for key in keys if key]


def match_direct(
    contexts: Sequence[ContextInfo],
    shim_refs: Sequence[ShimReference],
    trusted: TrustedOrigin,
) -> Optional[ContextInfo]:
    """Tier 1: the trusted context whose keys match the largest advertised frame."""
    areas = shim_key_areas(shim_refs)
    if not areas:
        return None
    best: Optional[ContextInfo] = None
    best_area = -1.0
    for context in contexts:
        if not context.url or not trusted.matches(context.url):
            continue
        matched = [areas[key] for key in context_keys(context.url) if key in areas]
        if not matched:
            continue
        area = max(matched)
        if area > best_area:
            best, best_area = context, area
    return best


def rank_probes(probes: Sequence[ProbeResult]) -> Optional[ProbeResult]:
    """Key matches first, then the context with the most elements."""
    if not probes:
        return None
    return sorted(probes, key=lambda p: (not p.key_match, -p.element_count))[0]


class FrameResolver:
    """Bounded polling search for the app frame."""

    def __init__(
        self,
        host: Host,
        trusted: TrustedOrigin,
        interval: float = 0.25,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.trusted = trusted
        self.interval = interval
        self.timeout = timeout

    async def _enumerate(self) -> List[ContextInfo]:
        try:
            return await self.host.enumerate_contexts()
        except HostError as exc:
            raise PermissionUnavailable(
                f"Cannot enumerate rendering contexts (missing permission?): {exc}"
            ) from exc

    async def probe_contexts(
        self,
        contexts: Sequence[ContextInfo],
        shim_refs: Sequence[ShimReference],
    ) -> Optional[ProbeResult]:
        """Tier 2: run the read-only probe in each nested context."""
        areas = shim_key_areas(shim_refs)
        seen: Set[int] = set()
        probes: List[ProbeResult] = []
        for context in contexts:
            context_id = context.context_id
            if context_id == self.host.root_context_id or context_id in seen:
                continue
            seen.add(context_id)
            try:
                raw = await self.host.probe(context_id, routines.PROBE)
            except HostError as exc:
                logger.debug("Probe failed in context %s: %s", context_id, exc)
                continue
            if not isinstance(raw, dict):
                continue
            href = str(raw.get("href") or "")
            origin = str(raw.get("origin") or "") or url_origin(href)
            if not href or not self.trusted.matches(href, origin_host(origin)):
                continue
            probes.append(
                ProbeResult(
                    context_id=context_id,
                    url=href,
                    origin=origin,
                    element_count=int(raw.get("elementCount") or 0),
                    ready_state=str(raw.get("readyState") or ""),
                    key_match=any(key in areas for key in context_keys(href, origin)),
                )
            )
        return rank_probes(probes)

    async def resolve(self, shim_refs: Sequence[ShimReference]) -> ResolutionResult:
        """Run tiers 1 and 2 every ``interval`` seconds until ``timeout``."""
        page_url = await self.host.page_url()
        if self.trusted.is_shim_url(page_url):
            logger.info("Top-level document is the app frame itself")
            return ResolutionResult(
                self.host.root_context_id, page_url, ResolutionMethod.DIRECT_MATCH
            )

        contexts = await self._enumerate()
        if not shim_refs:
            logger.info("No advertised app frames; skipping resolution")
            return ResolutionResult(None, None, ResolutionMethod.NONE, tuple(contexts))

        deadline = time.monotonic() + self.timeout
        attempt = 0
        while True:
            attempt += 1
            direct = match_direct(contexts, shim_refs, self.trusted)
            if direct is not None:
                logger.info("Resolved app frame by key match: %s", describe_context(direct))
                return ResolutionResult(
                    direct.context_id, direct.url, ResolutionMethod.DIRECT_MATCH
                )
            probed = await self.probe_contexts(contexts, shim_refs)
            if probed is not None:
                logger.info(
                    "Resolved app frame by probe: context=%s url=%s key_match=%s",
                    probed.context_id,
                    probed.url,
                    probed.key_match,
                )
                return ResolutionResult(probed.context_id, probed.url, ResolutionMethod.PROBE)
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.interval)
            contexts = await self._enumerate()

        logger.info("Frame resolution timed out after %d attempt(s)", attempt)
        return ResolutionResult(None, None, ResolutionMethod.NONE, tuple(contexts))

    async def heuristic_scan(self) -> Optional[ResolutionResult]:
        """Tier 3: the trusted context with the most content."""
        candidates = await scan_candidate_frames(self.host, self.trusted)
        if not candidates:
            return None
        best = max(candidates, key=lambda c: c.heuristic_score)
        logger.info(
            "Resolved app frame by heuristic scan: context=%s score=%d",
            best.context_id,
            best.heuristic_score,
        )
        return ResolutionResult(best.context_id, best.url, ResolutionMethod.HEURISTIC_SCAN)


def describe_failure(result: ResolutionResult, shim_refs: Sequence[ShimReference]) -> str:
    """Human-readable explanation with remediation steps and raw diagnostics."""
    frames = list(result.diagnostics)
    hidden = sum(1 for frame in frames if not frame.url)
    lines = [
        "Found the app frame element, but could not reach the app's rendering context.",
        "",
        "Try:",
        "1) Wait until the app has finished rendering, then export again",
        "2) Reload the host page",
        "3) Disable privacy, ad-blocking or translation extensions and retry",
        "",
    ]
    if shim_refs:
        lines.append(f"Frame URL example: {shim_refs[0].src}")
        lines.append("")
    lines.append("Debug:")
    lines.append(f"- contexts={len(frames)}")
    lines.append(f"- hidden url contexts={hidden}")
    shown = frames[:MAX_DIAGNOSTIC_LINES]
    if shown:
        lines.append(f"- contexts (first {len(shown)}):")
        lines.extend(f"- {describe_context(frame)}" for frame in shown)
    return "\n".join(lines)
