from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from types import SimpleNamespace
from typing import Any

import pytest
from aiohttp import ClientError
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.exceptions import UpnpError

from aiodesktopcast.errors import DeviceCastError
from aiodesktopcast.models.core import CastCommand
from aiodesktopcast.renderer import caster as caster_module
from aiodesktopcast.renderer import discovery as discovery_module
from aiodesktopcast.renderer.caster import UpnpRendererControl
from aiodesktopcast.renderer.discovery import SsdpDeviceFeed

TV = "http://192.168.1.20:1400/tv.xml"
SPEAKER = "http://192.168.1.21:1400/speaker.xml"
BROKEN = "http://192.168.1.22:1400/broken.xml"
AV_TRANSPORT = "urn:schemas-upnp-org:service:AVTransport:1"
MEDIA_URL = "rtsp://192.168.1.10:8554/"

SearchCallback = Callable[[dict[str, str]], Awaitable[None]]


def _upnp_device(name: str, *services: str, model: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        friendly_name=name,
        all_services=[SimpleNamespace(service_type=service) for service in services],
        model_description=model,
    )


DESCRIPTIONS = {
    TV: _upnp_device("Living Room TV", AV_TRANSPORT, model="Kodi - Media Renderer"),
    SPEAKER: _upnp_device("Kitchen Speaker", "urn:schemas-upnp-org:service:RenderingControl:1"),
}


@pytest.fixture
def described(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Serve device descriptions from DESCRIPTIONS and record each fetch."""
    fetched: list[str] = []

    async def _create_device(self: UpnpFactory, location: str) -> Any:
        fetched.append(location)
        if location not in DESCRIPTIONS:
            raise UpnpError(f"no description at {location}")
        return DESCRIPTIONS[location]

    monkeypatch.setattr(UpnpFactory, "async_create_device", _create_device)
    return fetched


def _search_rounds(monkeypatch: pytest.MonkeyPatch, rounds: list[list[str]]) -> None:
    """Answer each SSDP search round with the given locations, then fail the network."""
    remaining = list(rounds)

    async def _search(async_callback: SearchCallback, **kwargs: Any) -> None:
        if not remaining:
            raise OSError("Network is unreachable")
        for location in remaining.pop(0):
            await async_callback({"location": location})

    monkeypatch.setattr(discovery_module, "async_search", _search)


@pytest.mark.asyncio
async def test_feed_describes_each_location_once(
    monkeypatch: pytest.MonkeyPatch, described: list[str]
) -> None:
    _search_rounds(monkeypatch, [[TV, SPEAKER], [TV, BROKEN], [BROKEN, TV]])
    feed = SsdpDeviceFeed(requester=object())  # type: ignore[arg-type]

    async def _collect() -> list[Any]:
        return [device async for device in feed()]

    devices = await asyncio.wait_for(_collect(), timeout=5)

    assert [device.location for device in devices] == [TV, SPEAKER, TV, TV]
    assert described == [TV, SPEAKER, BROKEN]
    tv = devices[0]
    assert tv.friendly_name == "Living Room TV"
    assert tv.services == (AV_TRANSPORT,)
    assert tv.model_description == "Kodi - Media Renderer"
    # Repeats reuse the cached description
    assert devices[2] is tv


@pytest.mark.asyncio
async def test_feed_ends_when_search_fails(
    monkeypatch: pytest.MonkeyPatch, described: list[str]
) -> None:
    _search_rounds(monkeypatch, [])
    feed = SsdpDeviceFeed(requester=object())  # type: ignore[arg-type]

    async def _collect() -> list[Any]:
        return [device async for device in feed()]

    assert await asyncio.wait_for(_collect(), timeout=5) == []
    assert described == []


@pytest.mark.asyncio
async def test_closing_feed_stops_the_search(
    monkeypatch: pytest.MonkeyPatch, described: list[str]
) -> None:
    search_cancelled = asyncio.Event()

    async def _search(async_callback: SearchCallback, **kwargs: Any) -> None:
        await async_callback({"location": TV})
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            search_cancelled.set()
            raise

    monkeypatch.setattr(discovery_module, "async_search", _search)
    feed = SsdpDeviceFeed(requester=object())  # type: ignore[arg-type]

    async with aclosing(feed()) as devices:
        first = await asyncio.wait_for(anext(devices), timeout=5)
    assert first.location == TV
    assert search_cancelled.is_set()


class _FakeRenderer:
    """Stands in for the DLNA media renderer profile."""

    def __init__(self, calls: list[tuple[Any, ...]], device: Any) -> None:
        self._calls = calls
        self.device = device

    async def construct_play_media_metadata(self, **kwargs: Any) -> str:
        self._calls.append(("metadata", kwargs))
        return "<DIDL-Lite/>"

    async def async_set_transport_uri(self, media_url: str, title: str, metadata: str) -> None:
        self._calls.append(("set_transport_uri", media_url, title, metadata))

    async def async_play(self) -> None:
        self._calls.append(("play",))


@pytest.fixture
def renderer_calls(monkeypatch: pytest.MonkeyPatch, described: list[str]) -> list[tuple[Any, ...]]:
    calls: list[tuple[Any, ...]] = []
    monkeypatch.setattr(
        caster_module,
        "DmrDevice",
        lambda device, event_handler: _FakeRenderer(calls, device),
    )
    return calls


@pytest.mark.asyncio
async def test_control_sets_uri_then_plays(renderer_calls: list[tuple[Any, ...]]) -> None:
    control = UpnpRendererControl(requester=object())  # type: ignore[arg-type]
    await control.load(TV, CastCommand(media_url=MEDIA_URL, title="Office desktop"))

    assert [call[0] for call in renderer_calls] == ["metadata", "set_transport_uri", "play"]
    metadata = renderer_calls[0][1]
    assert metadata["media_url"] == MEDIA_URL
    assert metadata["media_title"] == "Office desktop"
    assert metadata["override_mime_type"] == "application/x-rtp"
    assert metadata["override_upnp_class"] == "object.item.videoItem"
    assert metadata["override_dlna_features"].startswith("DLNA.ORG_OP=01")
    assert renderer_calls[1] == ("set_transport_uri", MEDIA_URL, "Office desktop", "<DIDL-Lite/>")


@pytest.mark.asyncio
async def test_control_without_autoplay_does_not_play(
    renderer_calls: list[tuple[Any, ...]],
) -> None:
    control = UpnpRendererControl(requester=object())  # type: ignore[arg-type]
    await control.load(TV, CastCommand(media_url=MEDIA_URL, autoplay=False))

    assert [call[0] for call in renderer_calls] == ["metadata", "set_transport_uri"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [UpnpError("bad description"), ClientError("connection refused"), TimeoutError()],
)
async def test_control_failures_become_device_cast_errors(
    monkeypatch: pytest.MonkeyPatch, error: Exception
) -> None:
    async def _create_device(self: UpnpFactory, location: str) -> Any:
        raise error

    monkeypatch.setattr(UpnpFactory, "async_create_device", _create_device)
    control = UpnpRendererControl(requester=object())  # type: ignore[arg-type]

    with pytest.raises(DeviceCastError) as exc_info:
        await control.load(SPEAKER, CastCommand(media_url=MEDIA_URL))
    assert exc_info.value.location == SPEAKER
    assert exc_info.value.__cause__ is error
