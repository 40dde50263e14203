"""Utility functions for aiodesktopcast."""

from __future__ import annotations

import functools
import socket
import types


def get_local_ip() -> str | None:
    """Get a local IP address that renderers on the LAN can reach.

    Returns the IP address of the interface that would be used to connect
    to an external address, or None if no network is available.
    """
    try:
        # Connecting a UDP socket sends nothing, it only selects the interface
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            result: str = s.getsockname()[0]
    except OSError:
        return None
    if result.startswith("127."):
        return None
    return result


@functools.cache
def get_gst() -> types.SimpleNamespace:
    """Lazy import of the GStreamer bindings, initialising Gst on first use.

    Returns a namespace exposing ``Gst``, ``GstRtspServer``, ``GLib`` and
    ``GObject`` so callers do not each repeat the ``gi.require_version`` dance.
    """
    import gi  # noqa: PLC0415

    gi.require_version("Gst", "1.0")
    gi.require_version("GstRtspServer", "1.0")
    from gi.repository import GLib, GObject, Gst, GstRtspServer  # noqa: PLC0415

    if not Gst.is_initialized():
        Gst.init(None)
    return types.SimpleNamespace(Gst=Gst, GstRtspServer=GstRtspServer, GLib=GLib, GObject=GObject)
