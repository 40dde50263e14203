"""In-memory configuration for a desktop cast run."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from mashumaro.mixins.orjson import DataClassORJSONMixin

from .models.core import StreamConfig
from .models.types import DisconnectPolicy, DiscoveryPolicy

DEFAULT_PORT = 8554
DEFAULT_MOUNT_PATH = "/"
DEFAULT_TARGET_MODEL = "Kodi - Media Renderer"


def default_parallelism() -> int:
    """Thread count hint used when the caller does not set one."""
    return os.cpu_count() or 1


@dataclass
class DesktopCastConfig(DataClassORJSONMixin):
    """Everything the process entry point hands to the core.

    Owned by the caller for the lifetime of the process and never persisted.
    """

    stream: StreamConfig = field(
        default_factory=lambda: StreamConfig(parallelism=default_parallelism())
    )
    port: int = DEFAULT_PORT
    mount_path: str = DEFAULT_MOUNT_PATH
    latency_ms: int = 1500
    """Fixed startup buffering applied by the mount."""
    retransmission_ms: int = 2500
    backlog: int = 1
    disconnect_policy: DisconnectPolicy = DisconnectPolicy.ANY_CLIENT
    discovery_policy: DiscoveryPolicy = DiscoveryPolicy.SCAN_ALL
    discovery_timeout: float = 10.0
    """Seconds a discovery scan may run before it is cancelled."""
    target_model: str = DEFAULT_TARGET_MODEL
    """Model description matched by the named-target discovery policy."""
    advertise_mdns: bool = True
    media_title: str = "Desktop"

    def __post_init__(self) -> None:
        """Validate values that would only fail later inside GStreamer."""
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if not self.mount_path.startswith("/"):
            raise ValueError("mount_path must start with '/'")
        if self.discovery_timeout <= 0:
            raise ValueError("discovery_timeout must be positive")
