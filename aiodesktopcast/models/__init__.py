"""Models for aiodesktopcast."""

from __future__ import annotations

__all__ = [
    "DLNA_STREAMING_FEATURES",
    "RTP_CONTENT_TYPE",
    "UPNP_CLASS_VIDEO_ITEM",
    "CaptureBackend",
    "CaptureSourceDescriptor",
    "CastCommand",
    "CastReport",
    "CorrectorState",
    "DisconnectPolicy",
    "DiscoveredDevice",
    "DiscoveryPolicy",
    "Endpoint",
    "Resolution",
    "ShutdownReason",
    "StreamConfig",
    "core",
    "types",
]

from . import core, types
from .core import (
    DLNA_STREAMING_FEATURES,
    RTP_CONTENT_TYPE,
    UPNP_CLASS_VIDEO_ITEM,
    CaptureSourceDescriptor,
    CastCommand,
    CastReport,
    DiscoveredDevice,
    Endpoint,
    Resolution,
    StreamConfig,
)
from .types import (
    CaptureBackend,
    CorrectorState,
    DisconnectPolicy,
    DiscoveryPolicy,
    ShutdownReason,
)
