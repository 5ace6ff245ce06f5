"""Data models used throughout the export pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class ResolutionMethod(str, Enum):
    DIRECT_MATCH = "directMatch"
    PROBE = "probe"
    HEURISTIC_SCAN = "heuristicScan"
    NONE = "none"


class AssetKind(str, Enum):
    IMAGE = "image"
    FONT = "font"
    STYLESHEET = "stylesheet"


@dataclass(frozen=True)
class ContextInfo:
    """One node of the nested rendering-context tree; empty url means redacted."""

    context_id: int
    url: str
    parent_context_id: Optional[int]


@dataclass(frozen=True)
class ShimReference:
    """An embedded frame element seen from the top-level document."""

    src: str
    origin: str
    origin_host: str
    area: float


@dataclass
class CandidateFrame:
    """A rendering context annotated with content signals."""

    context_id: int
    url: str
    origin: str
    origin_host: str
    visual_area: float = 0.0
    element_count: int = 0
    text_length: int = 0
    has_non_trivial_content: bool = False

    @property
    def heuristic_score(self) -> int:
        return (
            (1_000_000 if self.has_non_trivial_content else 0)
            + self.element_count
            + self.text_length
        )


@dataclass
class ProbeResult:
    """Facts reported by the read-only probe routine in one context."""

    context_id: int
    url: str
    origin: str
    element_count: int
    ready_state: str
    key_match: bool = False


@dataclass(frozen=True)
class ResolutionResult:
    context_id: Optional[int]
    url: Optional[str]
    method: ResolutionMethod
    diagnostics: Tuple[ContextInfo, ...] = ()

    @property
    def found(self) -> bool:
        return self.context_id is not None


@dataclass(frozen=True)
class AssetReference:
    absolute_url: str
    kind: AssetKind
    origin_document: str


@dataclass(frozen=True)
class InlinedAsset:
    """An embedded representation of one fetched resource."""

    url: str
    encoded: str
    content_type: str


@dataclass
class ExportStats:
    asset_candidates: int = 0
    inlined: int = 0
    failed: int = 0

    def to_mapping(self) -> Dict[str, int]:
        return {
            "assetCandidates": self.asset_candidates,
            "inlined": self.inlined,
            "failed": self.failed,
        }


@dataclass
class SnapshotResult:
    markup: str
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


@dataclass
class InlineResult:
    markup: str
    stats: ExportStats
    warnings: List[str] = field(default_factory=list)


@dataclass
class WidgetState:
    """Captured visual states of one recognised interactive widget."""

    kind: str
    initial_label: str
    initial_index: int
    images_by_label: Dict[str, str]


@dataclass
class ExportResult:
    filename: str
    path: Path
    warnings: List[str]
    stats: ExportStats
    resolution: Optional[ResolutionResult] = None

    def to_mapping(self) -> dict:
        return {
            "filename": self.filename,
            "path": str(self.path),
            "warnings": list(self.warnings),
            "stats": self.stats.to_mapping(),
        }
