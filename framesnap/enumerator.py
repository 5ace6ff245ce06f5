"""Enumerate embedded frames that may host the app surface."""

from __future__ import annotations

import logging
from typing import List

from . import routines
from .config import TrustedOrigin
from .host import Host, HostError
from .models import CandidateFrame, ShimReference
from .utils import origin_host, safe_abs_url, url_origin

logger = logging.getLogger("framesnap")


async def list_shim_references(host: Host, trusted: TrustedOrigin) -> List[ShimReference]:
    """Embedded frames of the top-level document, largest first."""
    try:
        raw = await host.probe(host.root_context_id, routines.LIST_EMBEDS)
        page_url = await host.page_url()
    except HostError as exc:
        logger.warning("Could not list embedded frames: %s", exc)
        return []
    if not isinstance(raw, list):
        return []

    refs: List[ShimReference] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        src = str(entry.get("src") or "")
        if not src:
            continue
        absolute = safe_abs_url(src, page_url) or src
        origin = url_origin(absolute)
        host_name = origin_host(absolute)
        if not (trusted.matches_host(host_name) or trusted.host_suffix in src):
            continue
        refs.append(
            ShimReference(
                src=absolute,
                origin=origin,
                origin_host=host_name,
                area=float(entry.get("area") or 0),
            )
        )
    refs.sort(key=lambda ref: ref.area, reverse=True)
    logger.debug("Found %d trusted embedded frame(s) in the top document", len(refs))
    return refs


async def scan_candidate_frames(host: Host, trusted: TrustedOrigin) -> List[CandidateFrame]:
    """Probe every context of the tree and keep the trusted ones, unsorted."""
    try:
        contexts = await host.enumerate_contexts()
    except HostError as exc:
        logger.warning("Could not enumerate rendering contexts: %s", exc)
        return []
    candidates: List[CandidateFrame] = []
    for context in contexts:
        try:
            stats = await host.probe(context.context_id, routines.FRAME_STATS)
        except HostError as exc:
            logger.debug("Skipping context %s: %s", context.context_id, exc)
            continue
        if not isinstance(stats, dict):
            continue
        href = str(stats.get("href") or "")
        origin = str(stats.get("origin") or "") or url_origin(href)
        host_name = origin_host(origin) or origin_host(href)
        if not trusted.matches(href, host_name):
            continue
        candidates.append(
            CandidateFrame(
                context_id=context.context_id,
                url=href,
                origin=origin,
                origin_host=host_name,
                visual_area=float(stats.get("visualArea") or 0),
                element_count=int(stats.get("elementCount") or 0),
                text_length=int(stats.get("textLength") or 0),
                has_non_trivial_content=bool(stats.get("hasNonTrivialNodes")),
            )
        )
    return candidates
