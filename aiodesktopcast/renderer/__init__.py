"""Discovery of UPnP renderers and casting the stream to them."""

from .caster import (
    DiscoveryStrategy,
    NamedTargetStrategy,
    RendererCaster,
    RendererControl,
    ScanAllStrategy,
    UpnpRendererControl,
)
from .discovery import DeviceFeed, SsdpDeviceFeed, has_renderer_control

__all__ = [
    "DeviceFeed",
    "DiscoveryStrategy",
    "NamedTargetStrategy",
    "RendererCaster",
    "RendererControl",
    "ScanAllStrategy",
    "SsdpDeviceFeed",
    "UpnpRendererControl",
    "has_renderer_control",
]
