"""Discovery feed of UPnP playback devices on the local network."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from typing import Any

from aiohttp import ClientError
from async_upnp_client.aiohttp import AiohttpSessionRequester
from async_upnp_client.client import UpnpDevice
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.exceptions import UpnpError
from async_upnp_client.search import async_search

from aiodesktopcast.models.core import DiscoveredDevice

logger = logging.getLogger(__name__)

SSDP_ST_ALL = "ssdp:all"
SSDP_SEARCH_MX = 2
"""Seconds each SSDP M-SEARCH round waits for responses."""
RENDERER_CONTROL_SERVICE_PREFIX = "urn:schemas-upnp-org:service:AVTransport:"
"""Service type of the transport control a renderer needs to accept play commands."""

DeviceFeed = Callable[[], AsyncGenerator[DiscoveredDevice, None]]
"""Opens a fresh discovery feed. The feed may repeat devices and may never end."""


def has_renderer_control(device: DiscoveredDevice) -> bool:
    """Whether a device declares the service used to issue play commands."""
    return any(service.startswith(RENDERER_CONTROL_SERVICE_PREFIX) for service in device.services)


def device_from_upnp(location: str, upnp_device: UpnpDevice) -> DiscoveredDevice:
    """Build a :class:`DiscoveredDevice` from a parsed device description."""
    return DiscoveredDevice(
        location=location,
        friendly_name=upnp_device.friendly_name,
        services=tuple(service.service_type for service in upnp_device.all_services),
        model_description=upnp_device.model_description,
    )


class SsdpDeviceFeed:
    """
    Continuous SSDP search yielding described devices as responses arrive.

    M-SEARCH rounds are repeated until the consumer stops iterating, so the
    same device is usually yielded several times. Descriptions are fetched
    once per location and reused for repeats.
    """

    def __init__(
        self,
        requester: AiohttpSessionRequester,
        *,
        search_target: str = SSDP_ST_ALL,
        mx: int = SSDP_SEARCH_MX,
    ) -> None:
        """Initialize with the requester used to fetch device descriptions."""
        self._factory = UpnpFactory(requester, non_strict=True)
        self._search_target = search_target
        self._mx = mx

    def __call__(self) -> AsyncGenerator[DiscoveredDevice, None]:
        """Open a new feed."""
        return self._feed()

    async def _search_forever(self, locations: asyncio.Queue[str | None]) -> None:
        async def _on_response(headers: Any) -> None:
            if location := headers.get("location"):
                await locations.put(location)

        try:
            while True:
                await async_search(
                    _on_response, timeout=self._mx, search_target=self._search_target
                )
        except OSError as err:
            logger.warning("SSDP search failed: %s", err)
        finally:
            # Wakes the feed so it ends instead of waiting forever
            locations.put_nowait(None)

    async def _feed(self) -> AsyncGenerator[DiscoveredDevice, None]:
        locations: asyncio.Queue[str | None] = asyncio.Queue()
        described: dict[str, DiscoveredDevice] = {}
        failed: set[str] = set()
        search_task = asyncio.create_task(self._search_forever(locations))
        try:
            while True:
                location = await locations.get()
                if location is None:
                    return
                if location in failed:
                    continue
                if (device := described.get(location)) is None:
                    try:
                        upnp_device = await self._factory.async_create_device(location)
                    except (UpnpError, ClientError, TimeoutError) as err:
                        logger.debug("Failed to describe device at %s: %s", location, err)
                        failed.add(location)
                        continue
                    device = described[location] = device_from_upnp(location, upnp_device)
                    logger.debug("Discovered %s at %s", device.friendly_name, location)
                yield device
        finally:
            search_task.cancel()
            await asyncio.gather(search_task, return_exceptions=True)
