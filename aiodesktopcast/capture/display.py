"""X11 display server queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from Xlib import display as xdisplay
from Xlib.error import DisplayError, XError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorGeometry:
    """Position and size of a monitor on the X11 root window."""

    x: int
    y: int
    width: int
    height: int


def query_primary_monitor(display_name: str | None = None) -> MonitorGeometry | None:
    """Return the geometry of the RandR primary monitor.

    Returns None when the display has no monitor marked primary.

    Raises:
        DisplayError: If no connection to the display server can be made.
        XError: If the RandR request fails.
    """
    conn = xdisplay.Display(display_name)
    try:
        root = conn.screen().root
        reply = root.xrandr_get_monitors(is_active=True)
        for monitor in reply.monitors:
            if monitor.primary:
                return MonitorGeometry(
                    x=monitor.x,
                    y=monitor.y,
                    width=monitor.width_in_pixels,
                    height=monitor.height_in_pixels,
                )
        logger.debug("None of %d monitors is marked primary", len(reply.monitors))
        return None
    finally:
        conn.close()


DISPLAY_ERRORS: tuple[type[BaseException], ...] = (DisplayError, XError, OSError, AttributeError)
"""Exceptions that mean the display server cannot be queried.

AttributeError covers servers without the RandR extension.
"""
