"""Capture source resolution with ordered fallback between backends."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import ClassVar

from dbus_fast.errors import DBusError

from aiodesktopcast.errors import PortalRequestError, ResolutionError, SourceUnavailableError
from aiodesktopcast.models.core import CaptureSourceDescriptor
from aiodesktopcast.models.types import CaptureBackend
from aiodesktopcast.server.retimestamp import RETIMESTAMP_ELEMENT_NAME

from .audio import AudioDeviceRegistry, GstAudioDeviceRegistry, is_mixer_monitor
from .display import DISPLAY_ERRORS, MonitorGeometry, query_primary_monitor
from .portal import ScreenCastSession, open_screencast_session

logger = logging.getLogger(__name__)


class VideoSourceStrategy(ABC):
    """One way of obtaining a desktop video source."""

    backend: ClassVar[CaptureBackend]

    @abstractmethod
    async def describe(self) -> str:
        """
        Return the pipeline fragment for this source.

        Raises:
            SourceUnavailableError: If this backend cannot be used right now.
        """

    def close(self) -> None:
        """Release anything held for the lifetime of the capture."""


class PortalScreenCapture(VideoSourceStrategy):
    """Screen or window capture negotiated through the desktop portal."""

    backend = CaptureBackend.PORTAL_SCREEN_CAPTURE

    def __init__(
        self,
        open_session: Callable[[], Awaitable[ScreenCastSession]] = open_screencast_session,
    ) -> None:
        """Initialize with the coroutine that negotiates the portal session."""
        self._open_session = open_session
        self._session: ScreenCastSession | None = None

    async def describe(self) -> str:
        """Ask the user for a monitor or window and capture the first granted stream."""
        try:
            session = await self._open_session()
        except (DBusError, PortalRequestError, OSError, ValueError) as err:
            raise SourceUnavailableError(self.backend, str(err)) from err
        if not session.streams:
            session.close()
            raise SourceUnavailableError(self.backend, "portal granted no streams")
        # The portal session must outlive this call or PipeWire drops the stream
        self._session = session
        node_id = session.streams[0].node_id
        return (
            f"pipewiresrc do-timestamp=true keepalive-time=100 path={node_id}"
            f" ! {RETIMESTAMP_ELEMENT_NAME}"
        )

    def close(self) -> None:
        """End the portal session."""
        if self._session is not None:
            self._session.close()
            self._session = None


class DisplayServerRegion(VideoSourceStrategy):
    """Capture of the primary monitor's region on the X11 display."""

    backend = CaptureBackend.DISPLAY_SERVER_REGION

    def __init__(
        self, query: Callable[[], MonitorGeometry | None] = query_primary_monitor
    ) -> None:
        """Initialize with the blocking primary monitor query."""
        self._query = query

    async def describe(self) -> str:
        """Describe an ``ximagesrc`` bounded to the primary monitor."""
        try:
            geometry = await asyncio.to_thread(self._query)
        except DISPLAY_ERRORS as err:
            raise SourceUnavailableError(self.backend, str(err) or type(err).__name__) from err
        if geometry is None:
            raise SourceUnavailableError(self.backend, "no primary monitor")
        # ximagesrc end coordinates are inclusive
        return (
            f"ximagesrc startx={geometry.x} starty={geometry.y}"
            f" endx={geometry.x + geometry.width - 1} endy={geometry.y + geometry.height - 1}"
        )


class DisplayServerFullScreen(VideoSourceStrategy):
    """Unconfigured capture of the whole X11 display. Never fails."""

    backend = CaptureBackend.DISPLAY_SERVER_FULL_SCREEN

    async def describe(self) -> str:
        """Describe a plain ``ximagesrc``."""
        return "ximagesrc"


def default_video_strategies() -> list[VideoSourceStrategy]:
    """Video strategies from most to least capable."""
    return [PortalScreenCapture(), DisplayServerRegion(), DisplayServerFullScreen()]


async def resolve_video_source(
    strategies: Sequence[VideoSourceStrategy] | None = None,
) -> CaptureSourceDescriptor:
    """
    Resolve the video source, trying each strategy in order.

    The first strategy that succeeds wins; later ones are never tried.

    Raises:
        ResolutionError: If every strategy failed.
    """
    if strategies is None:
        strategies = default_video_strategies()
    for strategy in strategies:
        try:
            description = await strategy.describe()
        except SourceUnavailableError as err:
            logger.debug("Video capture backend unavailable: %s", err)
            continue
        logger.info("Capturing video via %s", strategy.backend.value)
        return CaptureSourceDescriptor(backend=strategy.backend, description=description)
    raise ResolutionError("No video capture backend available")


async def resolve_audio_source(
    registry: AudioDeviceRegistry | None = None,
) -> CaptureSourceDescriptor:
    """
    Resolve the audio source to the first monitor of the system mixer.

    Raises:
        ResolutionError: If no monitor device exists. Silence is not substituted.
    """
    if registry is None:
        registry = GstAudioDeviceRegistry()
    devices = await asyncio.to_thread(registry.devices)
    for device in devices:
        if not is_mixer_monitor(device):
            continue
        internal_name = device.get_property("internal-name")
        logger.info("Capturing audio from monitor %s", internal_name)
        return CaptureSourceDescriptor(
            backend=CaptureBackend.AUDIO_MONITOR,
            description=f"pulsesrc do-timestamp=true device={internal_name}",
        )
    raise ResolutionError("No sound monitor found, can't forward audio output")
