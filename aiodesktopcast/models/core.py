"""
Core data model for aiodesktopcast.

These dataclasses travel between the source resolver, the pipeline composer,
the streaming session and the renderer caster. They are plain values: nothing
here talks to GStreamer, D-Bus or the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import CaptureBackend

RTP_CONTENT_TYPE = "application/x-rtp"
DLNA_STREAMING_FEATURES = (
    "DLNA.ORG_OP=01;DLNA.ORG_CI=0;DLNA.ORG_FLAGS=01700000000000000000000000000000"
)
UPNP_CLASS_VIDEO_ITEM = "object.item.videoItem"


@dataclass(frozen=True)
class Resolution(DataClassORJSONMixin):
    """Output size in pixels."""

    width: int
    height: int

    def __post_init__(self) -> None:
        """Reject non-positive dimensions."""
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Resolution dimensions must be positive")


@dataclass(frozen=True)
class StreamConfig(DataClassORJSONMixin):
    """Resize and encode settings supplied by the caller."""

    target_resolution: Resolution | None = None
    """Scale video to this size. None keeps the captured size."""
    parallelism: int = 1
    """Thread count hint for the scaler and the video encoder."""

    def __post_init__(self) -> None:
        """Reject a parallelism hint below one."""
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")


@dataclass(frozen=True)
class CaptureSourceDescriptor(DataClassORJSONMixin):
    """A resolved capture source, tagged with the backend that produced it."""

    backend: CaptureBackend
    description: str
    """Pipeline fragment for the source; opaque to everything downstream."""


@dataclass(frozen=True)
class Endpoint(DataClassORJSONMixin):
    """Network location where the composed pipeline is served."""

    host: str
    port: int
    path: str = "/"

    @property
    def url(self) -> str:
        """RTSP URL renderers should open."""
        return f"rtsp://{self.host}:{self.port}{self.path}"


@dataclass(frozen=True)
class DiscoveredDevice(DataClassORJSONMixin):
    """A playback device seen during one discovery scan."""

    location: str
    """Description URL of the device, stable across repeated announcements."""
    friendly_name: str
    services: tuple[str, ...] = ()
    """Service types declared in the device description."""
    model_description: str | None = None

    @property
    def key(self) -> str:
        """Deduplication key within a scan."""
        return self.location


@dataclass(frozen=True)
class CastCommand(DataClassORJSONMixin):
    """Play command shared by every device attempted in one scan."""

    media_url: str
    content_type: str = RTP_CONTENT_TYPE
    title: str = "Desktop"
    upnp_class: str = UPNP_CLASS_VIDEO_ITEM
    dlna_features: str = DLNA_STREAMING_FEATURES
    autoplay: bool = True


@dataclass
class CastReport(DataClassORJSONMixin):
    """Outcome of one discovery scan."""

    attempted: list[str] = field(default_factory=list)
    """Locations a cast was attempted on, in order."""
    succeeded: list[str] = field(default_factory=list)
    """Locations that accepted the play command."""
    timed_out: bool = False
    """The scan ended because the deadline elapsed."""
