"""Models for enum types used by aiodesktopcast."""

from enum import Enum


class CaptureBackend(Enum):
    """Backend that produced a capture source description."""

    PORTAL_SCREEN_CAPTURE = "portal_screen_capture"
    """
    Screen or window capture negotiated through the desktop portal.

    Streams come from PipeWire and are retimestamped inside the pipeline.
    """
    DISPLAY_SERVER_REGION = "display_server_region"
    """Polling capture of the primary monitor region of the X11 display."""
    DISPLAY_SERVER_FULL_SCREEN = "display_server_full_screen"
    """Polling capture of the entire X11 display. Always available."""
    AUDIO_MONITOR = "audio_monitor"
    """Monitor source of the system audio mixer."""


class DisconnectPolicy(Enum):
    """When a client disconnect ends the streaming session."""

    ANY_CLIENT = "any-client"
    """Any disconnect terminates the session (single viewer deployment)."""
    LAST_CLIENT = "last-client"
    """The session terminates once no clients remain connected."""


class DiscoveryPolicy(Enum):
    """How renderers are selected during a discovery scan."""

    SCAN_ALL = "scan-all"
    """Cast to every renderer with playback control found before the deadline."""
    NAMED_TARGET = "named-target"
    """Cast to the first renderer whose model description matches a configured name."""


class ShutdownReason(Enum):
    """Why the session control loop was asked to stop."""

    CLIENT_DISCONNECTED = "client_disconnected"
    PIPELINE_ERROR = "pipeline_error"
    CANCELLED = "cancelled"
    """The owner of the session stopped it (task cancelled or server closed)."""


class CorrectorState(Enum):
    """Lifecycle of the timestamp corrector element."""

    IDLE = "idle"
    """Pads not attached yet."""
    LINKED = "linked"
    """Sink and source pads attached to the element."""
    FLOWING = "flowing"
    """At least one buffer has been retimestamped."""
