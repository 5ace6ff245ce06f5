"""High-level orchestration: resolve the app frame, snapshot it, inline assets."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from . import routines
from .cache import DEFAULT_CACHE, FetchCache
from .config import ExportConfig, ExportOptions
from .enumerator import list_shim_references
from .errors import ExportInProgress, FetchFailure, InjectionFailure, ResolutionTimeout
from .fetcher import Fetcher, HttpFetcher
from .host import Host, HostError, open_page
from .inliner import AssetInliner
from .models import ExportResult, ResolutionResult
from .resolver import FrameResolver, describe_failure
from .snapshot import Snapshotter
from .utils import make_filename
from .widgets import WidgetPreserver

logger = logging.getLogger("framesnap")

NO_APP_FRAME_MESSAGE = (
    "No app frame found. Open a page that contains an interactive app, "
    "then try Export again."
)


def persist(content: Union[str, bytes], filename: str, output_root: Path) -> Path:
    """Write the finished artifact; called only once an export fully succeeded."""
    output_root.mkdir(parents=True, exist_ok=True)
    output_path = output_root / filename
    if isinstance(content, bytes):
        output_path.write_bytes(content)
    else:
        output_path.write_text(content, encoding="utf-8")
    logger.info("Saved export to %s", output_path)
    return output_path


class Exporter:
    """Runs one export at a time against a host page."""

    def __init__(
        self,
        host: Host,
        config: Optional[ExportConfig] = None,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[FetchCache[str]] = None,
        preserver: Optional[WidgetPreserver] = None,
    ) -> None:
        self.host = host
        self.config = config or ExportConfig()
        if cache is None:
            bounded = self.config.cache_max_entries is not None or self.config.cache_ttl is not None
            cache = (
                FetchCache(self.config.cache_max_entries, self.config.cache_ttl)
                if bounded
                else DEFAULT_CACHE
            )
        self.cache = cache
        self.fetcher = fetcher
        if self.fetcher is not None and self.fetcher.blob_reader is None:
            self.fetcher.blob_reader = self._read_blob
        self.preserver = preserver or WidgetPreserver()
        self._lock = asyncio.Lock()
        self._blob_context: Optional[int] = None

    async def _read_blob(self, url: str) -> str:
        context_id = (
            self._blob_context if self._blob_context is not None else self.host.root_context_id
        )
        try:
            return await self.host.probe(context_id, routines.FETCH_BLOB, url)
        except HostError as exc:
            raise FetchFailure(url, str(exc)) from exc

    async def get_fetcher(self) -> Fetcher:
        if self.fetcher is None:
            self.fetcher = HttpFetcher(
                cache=self.cache,
                blob_reader=self._read_blob,
                timeout=self.config.fetch_timeout,
                cookies=await self.host.cookies(),
            )
        return self.fetcher

    async def ping(self, context_id: int) -> Dict[str, Any]:
        """Context metadata; ``helper`` tells whether the module is loaded."""
        metadata = await self.host.probe(context_id, routines.PING)
        return dict(metadata) if isinstance(metadata, dict) else {}

    async def ensure_helper(self, context_id: int) -> None:
        try:
            if (await self.ping(context_id)).get("helper"):
                return
        except HostError as exc:
            logger.debug("Ping failed before injection: %s", exc)
        await self.host.inject(context_id, routines.HELPER_MODULE)
        try:
            loaded = (await self.ping(context_id)).get("helper")
        except HostError as exc:
            raise InjectionFailure(f"Ping failed after injection: {exc}") from exc
        if not loaded:
            raise InjectionFailure(
                f"Exporter module did not load in the app frame (context={context_id})"
            )

    async def resolve_target(self) -> ResolutionResult:
        """Find the app frame or raise ``ResolutionTimeout`` with diagnostics."""
        trusted = self.config.trusted
        resolver = FrameResolver(
            self.host,
            trusted,
            interval=self.config.resolve_interval,
            timeout=self.config.resolve_timeout,
        )
        shim_refs = await list_shim_references(self.host, trusted)
        result = await resolver.resolve(shim_refs)
        if result.found:
            return result
        if not shim_refs:
            raise ResolutionTimeout(NO_APP_FRAME_MESSAGE, result.diagnostics)

        fallback = await resolver.heuristic_scan()
        if fallback is not None:
            return fallback
        raise ResolutionTimeout(describe_failure(result, shim_refs), result.diagnostics)

    async def start_export(
        self,
        options: ExportOptions,
        filename_hint: Optional[str] = None,
    ) -> ExportResult:
        """Resolve the app frame and export it."""
        if self._lock.locked():
            raise ExportInProgress("An export is already running")
        async with self._lock:
            resolution = await self.resolve_target()
            if resolution.context_id is None:
                raise ResolutionTimeout(NO_APP_FRAME_MESSAGE, resolution.diagnostics)
            return await self._export(resolution.context_id, options, filename_hint, resolution)

    async def export_context(
        self,
        context_id: int,
        options: ExportOptions,
        filename_hint: Optional[str] = None,
    ) -> ExportResult:
        """Export a context that has already been resolved."""
        if self._lock.locked():
            raise ExportInProgress("An export is already running")
        async with self._lock:
            return await self._export(context_id, options, filename_hint, None)

    async def _export(
        self,
        context_id: int,
        options: ExportOptions,
        filename_hint: Optional[str],
        resolution: Optional[ResolutionResult],
    ) -> ExportResult:
        start = time.perf_counter()
        await self.ensure_helper(context_id)
        self._blob_context = context_id
        fetcher = await self.get_fetcher()
        snapshotter = Snapshotter(self.host, fetcher, self.config, self.preserver)

        base_url = await snapshotter.wait_until_ready(context_id)
        warnings: List[str] = []
        widget_state = None
        if options.keep_scripts:
            widget_state = await self.preserver.capture(
                self.host,
                context_id,
                fetcher,
                warnings,
                interval=self.config.widget_interval,
                timeout=self.config.widget_timeout,
            )

        snapshot = await snapshotter.snapshot(context_id, options, widget_state, base_url)
        warnings.extend(snapshot.warnings)

        inliner = AssetInliner(fetcher, self.config.fetch_concurrency)
        inlined = await inliner.inline(snapshot.markup, base_url, options)
        warnings.extend(inlined.warnings)

        filename = make_filename(filename_hint or self.config.filename_prefix, "html")
        path = persist(inlined.markup, filename, self.config.output_root)
        logger.info(
            "Export finished in %.2fs (assets: %d, inlined: %d, failed: %d)",
            time.perf_counter() - start,
            inlined.stats.asset_candidates,
            inlined.stats.inlined,
            inlined.stats.failed,
        )
        return ExportResult(
            filename=filename,
            path=path,
            warnings=warnings,
            stats=inlined.stats,
            resolution=resolution,
        )

    def close(self) -> None:
        if isinstance(self.fetcher, HttpFetcher):
            self.fetcher.close()

    async def save_archive(self, filename_hint: Optional[str] = None) -> Path:
        """Whole-page single-file capture (MHTML) of the host page."""
        archive = await self.host.capture_whole_page_archive()
        filename = make_filename(filename_hint or self.config.filename_prefix, "mhtml")
        return persist(archive, filename, self.config.output_root)


async def run_export(
    url: str,
    config: ExportConfig,
    options: ExportOptions,
    filename_hint: Optional[str] = None,
) -> ExportResult:
    """Open ``url`` in a headless browser and export its app frame."""
    async with open_page(url, config) as host:
        exporter = Exporter(host, config)
        try:
            return await exporter.start_export(options, filename_hint)
        finally:
            exporter.close()


async def run_archive(
    url: str,
    config: ExportConfig,
    filename_hint: Optional[str] = None,
) -> Path:
    async with open_page(url, config) as host:
        return await Exporter(host, config).save_archive(filename_hint)
