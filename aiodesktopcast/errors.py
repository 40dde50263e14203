"""Exceptions raised by aiodesktopcast.

Fatal conditions (resolution, configuration, pipeline) propagate to the process
boundary. Per-device cast failures and pad callback failures are contained where
they happen and only ever logged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.types import CaptureBackend


class DesktopCastError(Exception):
    """Base class for all aiodesktopcast errors."""


class SourceUnavailableError(DesktopCastError):
    """A single capture backend could not provide a source."""

    def __init__(self, backend: CaptureBackend, message: str) -> None:
        """Initialize with the backend that failed."""
        super().__init__(f"{backend.value}: {message}")
        self.backend = backend


class ResolutionError(DesktopCastError):
    """No capture backend in a fallback chain produced a source."""


class ConfigurationError(DesktopCastError):
    """The streaming server or mount point could not be set up."""


class PipelineError(DesktopCastError):
    """The media pipeline reported a fatal error after startup."""


class PadCallbackError(DesktopCastError):
    """A pad function raised; the owning element is poisoned."""


class DeviceCastError(DesktopCastError):
    """Issuing the play command to one renderer failed."""

    def __init__(self, location: str, message: str) -> None:
        """Initialize with the location of the renderer."""
        super().__init__(f"{location}: {message}")
        self.location = location


class PortalRequestError(DesktopCastError):
    """The desktop portal ended a request with a non-success response code."""

    def __init__(self, method: str, response: int) -> None:
        """Initialize with the portal method and its response code."""
        super().__init__(f"Portal request {method} ended with response {response}")
        self.method = method
        self.response = response
