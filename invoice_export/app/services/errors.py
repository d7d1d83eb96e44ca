"""
Error taxonomy for the export pipeline.

Launch failures are kept apart from failures during use: a session that
never started owes no cleanup. Unsupported formats are expected input
and are reported to callers as such, never as a crash.
"""

from typing import Optional


class ExportError(RuntimeError):
    """Base class for every failure raised by the export pipeline."""


class LaunchError(ExportError):
    """Raised when the rendering engine cannot be started."""


class RenderError(ExportError):
    """Raised when a live render session fails during use."""


class SessionClosedError(RenderError):
    """Raised when a released render session is used again."""


class NavigationError(RenderError):
    """Raised when the template endpoint is unreachable or answers with an error."""


class NavigationTimeoutError(NavigationError):
    """Raised when the template page does not reach network idle in time."""


class HydrationTimeoutError(RenderError):
    """Raised when the template page never acknowledges the posted data."""


class CaptureError(RenderError):
    """Raised when print-to-PDF fails or produces no output."""


class UnsupportedFormatError(ExportError):
    """Raised for export formats with no implemented pipeline path."""

    def __init__(self, requested_format: str, reason: Optional[str] = None):
        self.requested_format = requested_format
        self.reason = reason or "Export format not implemented yet"
        super().__init__(f"{self.reason}: '{requested_format}'")


class DeliveryError(ExportError):
    """Raised when handing a send instruction to the mail collaborator fails."""
