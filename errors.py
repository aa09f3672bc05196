"""
Error taxonomy shared by the collector, the aggregation pipeline and the CLI.
"""
from typing import Optional


class ContribReportError(Exception):
    """Base class for all report pipeline errors."""


class NotAuthenticated(ContribReportError):
    """No credential is available for the upstream service."""

    def __init__(self, message: str = "Not authenticated: no GitHub token configured"):
        super().__init__(message)


class UpstreamRequestFailed(ContribReportError):
    """
    A page or detail fetch failed (non-success response or network error).

    Carries the failing page index or enrichment unit key so the caller can report it
    and retry the whole walk.
    """

    def __init__(self, message: str, page: Optional[int] = None, unit: Optional[str] = None, status: Optional[int] = None):
        self.page = page
        self.unit = unit
        self.status = status
        super().__init__(message)

    def __str__(self):
        base = super().__str__()
        if self.page is not None:
            return f"page {self.page}: {base}"
        if self.unit:
            return f"{self.unit}: {base}"
        return base


class Misconfiguration(ContribReportError):
    """Invalid request detected before a build starts (no selector, no prior report, bad settings)."""


class BuildCancelled(ContribReportError):
    """A build was superseded by a newer one or cancelled explicitly."""


class InvalidTransition(ContribReportError):
    """Illegal build state transition."""


__all__ = [
    "ContribReportError",
    "NotAuthenticated",
    "UpstreamRequestFailed",
    "Misconfiguration",
    "BuildCancelled",
    "InvalidTransition",
]
