"""Termination channel for the session control loop."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from aiodesktopcast.models.types import ShutdownReason

logger = logging.getLogger(__name__)


class MainLoopLike(Protocol):
    """A blocking control loop such as ``GLib.MainLoop``."""

    def run(self) -> None: ...

    def quit(self) -> None: ...


@dataclass(frozen=True)
class ShutdownRequest:
    """The message that ended the session."""

    reason: ShutdownReason
    detail: str | None = None


class ShutdownSignal:
    """
    Single, idempotent termination message for the control loop.

    Every observer (bus error watch, client disconnect watch) holds the same
    signal and may send on it from any thread. Only the first message counts;
    the loop owner is the only consumer.
    """

    def __init__(
        self,
        main_loop: MainLoopLike,
        dispatch: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        """
        Initialize the signal.

        Args:
            main_loop: The loop to stop.
            dispatch: Schedules a call on the loop's own context. Defaults to
                calling immediately, which suits loops whose quit() may be
                called before run().
        """
        self._main_loop = main_loop
        self._dispatch = dispatch or (lambda func: func())
        self._lock = threading.Lock()
        self._received: ShutdownRequest | None = None

    @property
    def received(self) -> ShutdownRequest | None:
        """The shutdown message, once one was sent."""
        return self._received

    def send(self, reason: ShutdownReason, detail: str | None = None) -> bool:
        """Ask the loop to stop. Returns False if a message was already sent."""
        with self._lock:
            if self._received is not None:
                return False
            self._received = ShutdownRequest(reason=reason, detail=detail)
        logger.info("Session shutdown requested: %s", reason.value)
        self._dispatch(self._main_loop.quit)
        return True

    def run_until_received(self) -> ShutdownRequest | None:
        """Run the loop on the calling thread until a message arrives."""
        if self._received is None:
            self._main_loop.run()
        return self._received
