"""Capture the desktop, serve it over RTSP and cast it to UPnP/DLNA renderers."""

from .capture.sources import resolve_audio_source, resolve_video_source
from .config import DesktopCastConfig
from .renderer.caster import NamedTargetStrategy, RendererCaster, ScanAllStrategy
from .server.pipeline import PipelineTopology, compose
from .server.session import StreamServer

__all__ = [
    "DesktopCastConfig",
    "NamedTargetStrategy",
    "PipelineTopology",
    "RendererCaster",
    "ScanAllStrategy",
    "StreamServer",
    "compose",
    "resolve_audio_source",
    "resolve_video_source",
]
