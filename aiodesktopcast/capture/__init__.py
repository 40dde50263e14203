"""Desktop capture source resolution."""

from .sources import (
    DisplayServerFullScreen,
    DisplayServerRegion,
    PortalScreenCapture,
    VideoSourceStrategy,
    default_video_strategies,
    resolve_audio_source,
    resolve_video_source,
)

__all__ = [
    "DisplayServerFullScreen",
    "DisplayServerRegion",
    "PortalScreenCapture",
    "VideoSourceStrategy",
    "default_video_strategies",
    "resolve_audio_source",
    "resolve_video_source",
]
