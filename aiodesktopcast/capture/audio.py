"""Audio device registry backed by the GStreamer device monitor."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from aiodesktopcast.util import get_gst

logger = logging.getLogger(__name__)

DEVICE_CLASS_FIELD = "device.class"
MONITOR_DEVICE_CLASS = "monitor"
PULSE_DEVICE_PREFIX = "pulse"


class AudioDevice(Protocol):
    """The subset of ``Gst.Device`` the resolver relies on."""

    def get_name(self) -> str: ...

    def get_properties(self) -> Any: ...

    def get_property(self, name: str) -> Any: ...


class AudioDeviceRegistry(Protocol):
    """Anything that can list audio source devices."""

    def devices(self) -> list[AudioDevice]: ...


class GstAudioDeviceRegistry:
    """Lists raw audio source devices known to GStreamer's device providers."""

    def devices(self) -> list[AudioDevice]:
        """Return the audio source devices currently present."""
        gi = get_gst()
        monitor = gi.Gst.DeviceMonitor.new()
        caps = gi.Gst.Caps.new_empty_simple("audio/x-raw")
        monitor.add_filter("Audio/Source", caps)
        devices: list[AudioDevice] = list(monitor.get_devices() or [])
        logger.debug("Device monitor reported %d audio sources", len(devices))
        return devices


def is_mixer_monitor(device: AudioDevice) -> bool:
    """Whether a device is a PulseAudio monitor of a mixer output."""
    if not device.get_name().startswith(PULSE_DEVICE_PREFIX):
        return False
    properties = device.get_properties()
    if properties is None or not properties.has_field(DEVICE_CLASS_FIELD):
        return False
    return properties.get_string(DEVICE_CLASS_FIELD) == MONITOR_DEVICE_CLASS
