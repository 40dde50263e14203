"""Casting the desktop stream to renderers found during a discovery scan."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Protocol

from aiohttp import ClientError, ClientSession, ClientTimeout
from async_upnp_client.aiohttp import AiohttpSessionRequester
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.exceptions import UpnpError
from async_upnp_client.profiles.dlna import DmrDevice

from aiodesktopcast.config import DEFAULT_TARGET_MODEL
from aiodesktopcast.errors import DeviceCastError
from aiodesktopcast.models.core import CastCommand, CastReport, DiscoveredDevice
from aiodesktopcast.models.types import DiscoveryPolicy

from .discovery import DeviceFeed, SsdpDeviceFeed, has_renderer_control

logger = logging.getLogger(__name__)


class RendererControl(Protocol):
    """Connects to a renderer and issues the play command."""

    async def load(self, location: str, command: CastCommand) -> None:
        """
        Load the media on the renderer at ``location``.

        Raises:
            DeviceCastError: If the renderer cannot be reached or refuses.
        """
        ...


class UpnpRendererControl:
    """Issues play commands through the DLNA media renderer profile."""

    def __init__(self, requester: AiohttpSessionRequester) -> None:
        """Initialize with the requester used for description and SOAP calls."""
        self._factory = UpnpFactory(requester, non_strict=True)

    async def load(self, location: str, command: CastCommand) -> None:
        """Set the transport URI on the renderer and start playback."""
        try:
            upnp_device = await self._factory.async_create_device(location)
            renderer = DmrDevice(upnp_device, None)
            metadata = await renderer.construct_play_media_metadata(
                media_url=command.media_url,
                media_title=command.title,
                override_mime_type=command.content_type,
                override_upnp_class=command.upnp_class,
                override_dlna_features=command.dlna_features,
            )
            await renderer.async_set_transport_uri(command.media_url, command.title, metadata)
            if command.autoplay:
                await renderer.async_play()
        except (UpnpError, ClientError, TimeoutError) as err:
            raise DeviceCastError(location, str(err) or type(err).__name__) from err


async def _attempt_cast(
    control: RendererControl,
    device: DiscoveredDevice,
    command: CastCommand,
    report: CastReport,
) -> bool:
    """Cast to one device. Failures are logged and never propagate."""
    report.attempted.append(device.location)
    try:
        await control.load(device.location, command)
    except DeviceCastError as err:
        logger.warning("Failed to cast to %s: %s", device.friendly_name, err)
        return False
    except Exception:
        logger.exception("Unexpected error casting to %s", device.friendly_name)
        return False
    report.succeeded.append(device.location)
    logger.info("Casting %s to %s", command.media_url, device.friendly_name)
    return True


class DiscoveryStrategy(ABC):
    """Decides which discovered devices receive the cast command."""

    @abstractmethod
    async def scan(
        self,
        devices: AsyncIterator[DiscoveredDevice],
        command: CastCommand,
        control: RendererControl,
        report: CastReport,
    ) -> None:
        """Consume the feed in arrival order, recording attempts in ``report``."""


class ScanAllStrategy(DiscoveryStrategy):
    """Cast to every device with renderer control until the feed or deadline ends."""

    async def scan(
        self,
        devices: AsyncIterator[DiscoveredDevice],
        command: CastCommand,
        control: RendererControl,
        report: CastReport,
    ) -> None:
        """Attempt each new location once, skipping devices without renderer control."""
        seen: set[str] = set()
        async for device in devices:
            if device.key in seen:
                continue
            seen.add(device.key)
            if not has_renderer_control(device):
                logger.debug("Ignoring %s, no renderer control", device.friendly_name)
                continue
            await _attempt_cast(control, device, command, report)


class NamedTargetStrategy(DiscoveryStrategy):
    """Cast to the first device whose model description matches exactly."""

    def __init__(self, model_description: str = DEFAULT_TARGET_MODEL) -> None:
        """Initialize with the model description to look for."""
        self.model_description = model_description

    async def scan(
        self,
        devices: AsyncIterator[DiscoveredDevice],
        command: CastCommand,
        control: RendererControl,
        report: CastReport,
    ) -> None:
        """Stop after the first successful cast to a matching device."""
        seen: set[str] = set()
        async for device in devices:
            if device.model_description != self.model_description or device.key in seen:
                continue
            seen.add(device.key)
            if await _attempt_cast(control, device, command, report):
                return


class RendererCaster:
    """
    Runs deadline-bounded discovery scans and casts a media URL to renderers.

    Reaching the deadline is the normal way for a scan to end; finding no
    renderer is not an error.
    """

    _client_session: ClientSession | None
    """Session used when feed or control are not supplied by the caller."""
    _owns_session: bool
    """Whether this caster created, and so must close, the client session."""

    def __init__(
        self,
        *,
        deadline: float = 10.0,
        title: str = "Desktop",
        target_model: str = DEFAULT_TARGET_MODEL,
        feed: DeviceFeed | None = None,
        control: RendererControl | None = None,
        client_session: ClientSession | None = None,
    ) -> None:
        """
        Initialize the caster.

        Args:
            deadline: Seconds after which a scan is cancelled.
            title: Title announced to renderers.
            target_model: Model description used by :meth:`cast_first_match`.
            feed: Opens discovery feeds. Defaults to an SSDP search.
            control: Issues play commands. Defaults to the DLNA renderer profile.
            client_session: Optional ClientSession for UPnP HTTP traffic.
                If None, one is created on first use.
        """
        self._deadline = deadline
        self._title = title
        self._target_model = target_model
        self._feed = feed
        self._control = control
        self._client_session = client_session
        self._owns_session = client_session is None

    def _ensure_defaults(self) -> tuple[DeviceFeed, RendererControl]:
        if self._feed is None or self._control is None:
            if self._client_session is None:
                self._client_session = ClientSession(timeout=ClientTimeout(total=30))
            requester = AiohttpSessionRequester(self._client_session, with_sleep=True)
            if self._feed is None:
                self._feed = SsdpDeviceFeed(requester)
            if self._control is None:
                self._control = UpnpRendererControl(requester)
        return self._feed, self._control

    def strategy_for(self, policy: DiscoveryPolicy) -> DiscoveryStrategy:
        """Return the strategy implementing a discovery policy."""
        if policy is DiscoveryPolicy.NAMED_TARGET:
            return NamedTargetStrategy(self._target_model)
        return ScanAllStrategy()

    async def cast(self, media_url: str, strategy: DiscoveryStrategy | None = None) -> CastReport:
        """
        Scan for renderers until the deadline and cast ``media_url`` to them.

        Args:
            media_url: URL of the live stream.
            strategy: Selection policy. Defaults to :class:`ScanAllStrategy`.
        """
        feed, control = self._ensure_defaults()
        strategy = strategy or ScanAllStrategy()
        command = CastCommand(media_url=media_url, title=self._title)
        report = CastReport()
        try:
            async with asyncio.timeout(self._deadline):
                async with aclosing(feed()) as devices:
                    await strategy.scan(devices, command, control, report)
        except TimeoutError:
            report.timed_out = True
            logger.debug("Discovery scan ended after %.1fs deadline", self._deadline)
        if not report.succeeded:
            logger.info("No renderer accepted %s", media_url)
        return report

    async def cast_first_match(self, media_url: str) -> CastReport:
        """Cast to the first renderer matching the configured model description."""
        return await self.cast(media_url, NamedTargetStrategy(self._target_model))

    async def close(self) -> None:
        """Close the client session if this caster owns it."""
        if self._owns_session and self._client_session is not None:
            await self._client_session.close()
            self._client_session = None
