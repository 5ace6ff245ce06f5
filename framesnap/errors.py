"""Exception taxonomy for the export pipeline."""

from __future__ import annotations

from typing import Optional, Sequence

from .models import ContextInfo


class FramesnapError(Exception):
    """Base class for every error raised by framesnap."""


class ResolutionTimeout(FramesnapError):
    """No rendering context matched within the resolution window."""

    def __init__(self, message: str, diagnostics: Sequence[ContextInfo] = ()) -> None:
        super().__init__(message)
        self.diagnostics = tuple(diagnostics)


class PermissionUnavailable(FramesnapError):
    """A required host capability is missing."""


class ContentNotReady(FramesnapError):
    """The target context never rendered content within the wait window."""


class FetchFailure(FramesnapError):
    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"{reason} for {url}")
        self.url = url
        self.status = status


class InjectionFailure(FramesnapError):
    """The helper module could not be loaded into the target context."""


class PatchSkipped(FramesnapError):
    """A widget pattern declined to capture or patch."""


class ExportInProgress(FramesnapError):
    """Another export is already running against this exporter."""
