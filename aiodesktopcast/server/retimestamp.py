"""
Pass-through element that retimestamps buffers with the pipeline running time.

Some capture backends emit freewheeling or heavily skewed timestamps, which
desynchronises audio from video and confuses the live encoder's pacing. This
element overwrites the PTS and DTS of every buffer with the running time of the
pipeline clock at arrival and forwards everything else untouched: events and
queries cross the element in both directions unmodified.

The buffer/event/query handling lives in :class:`TimestampCorrector`, which only
needs pad-like objects, so it works without GStreamer. The GStreamer element
type is built lazily by :func:`register_retimestamp`.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from aiodesktopcast.errors import PadCallbackError
from aiodesktopcast.models.types import CorrectorState
from aiodesktopcast.util import get_gst

logger = logging.getLogger(__name__)

RETIMESTAMP_ELEMENT_NAME = "retimestamp"

T = TypeVar("T")


class PadLike(Protocol):
    """The pad operations the corrector forwards through."""

    def push(self, buffer: Any) -> Any: ...

    def push_event(self, event: Any) -> bool: ...

    def peer_query(self, query: Any) -> bool: ...


class PadFunctionGuard:
    """
    Contains exceptions raised by pad functions of one element.

    The first exception is logged, converted into the function's failure
    result and poisons the element: from then on every guarded function
    returns its failure result without running.
    """

    def __init__(self, owner_name: Callable[[], str]) -> None:
        """Initialize with a callable naming the owning element for logs."""
        self._owner_name = owner_name
        self.failure: PadCallbackError | None = None
        """The failure that poisoned the element, if any."""

    @property
    def poisoned(self) -> bool:
        """Whether a pad function of the element has failed."""
        return self.failure is not None

    def wrap(self, func: Callable[..., T], fallback: T) -> Callable[..., T]:
        """Return ``func`` guarded so it yields ``fallback`` instead of raising."""

        @functools.wraps(func)
        def _guarded(*args: Any) -> T:
            if self.failure is not None:
                return fallback
            try:
                return func(*args)
            except Exception as err:
                logger.exception(
                    "Pad function %s of %s failed, element is now poisoned",
                    func.__name__,
                    self._owner_name(),
                )
                self.failure = PadCallbackError(f"{func.__name__}: {err!r}")
                return fallback

        return _guarded


class TimestampCorrector:
    """Buffer, event and query handling of the retimestamp element."""

    def __init__(
        self,
        running_time: Callable[[], int | None],
        *,
        flow_error: Any,
        name: Callable[[], str] = lambda: RETIMESTAMP_ELEMENT_NAME,
        writable: Callable[[Any], Any] = lambda buffer: buffer,
    ) -> None:
        """
        Initialize the corrector.

        Args:
            running_time: Returns the current running time of the pipeline in
                nanoseconds, or None while the pipeline is not playing.
            flow_error: Value returned from the chain function when a buffer
                cannot be retimestamped.
            name: Returns the element name used in log messages.
            writable: Returns the buffer itself when it may be modified, or a
                shallow copy otherwise. Upstream elements may still hold a
                reference to the incoming buffer.
        """
        self._running_time = running_time
        self._flow_error = flow_error
        self._writable = writable
        self._sinkpad: PadLike | None = None
        self._srcpad: PadLike | None = None
        self.state = CorrectorState.IDLE
        self.guard = PadFunctionGuard(name)

    def attach(self, sinkpad: PadLike, srcpad: PadLike) -> None:
        """Attach the element's sink and source pads."""
        self._sinkpad = sinkpad
        self._srcpad = srcpad
        self.state = CorrectorState.LINKED

    def sink_chain(self, pad: Any, parent: Any, buffer: Any) -> Any:
        """Stamp a buffer with the running time and push it downstream."""
        assert self._srcpad is not None
        running_time = self._running_time()
        if running_time is None:
            logger.error("No running time available on %s, failing buffer", pad)
            return self._flow_error
        buffer = self._writable(buffer)
        buffer.pts = running_time
        buffer.dts = running_time
        self.state = CorrectorState.FLOWING
        return self._srcpad.push(buffer)

    def sink_event(self, pad: Any, parent: Any, event: Any) -> bool:
        """Forward a downstream event to the source pad."""
        assert self._srcpad is not None
        return self._srcpad.push_event(event)

    def sink_query(self, pad: Any, parent: Any, query: Any) -> bool:
        """Forward a query arriving from upstream to the downstream peer."""
        assert self._srcpad is not None
        return self._srcpad.peer_query(query)

    def src_event(self, pad: Any, parent: Any, event: Any) -> bool:
        """Forward an upstream event to the sink pad."""
        assert self._sinkpad is not None
        return self._sinkpad.push_event(event)

    def src_query(self, pad: Any, parent: Any, query: Any) -> bool:
        """Forward a query arriving from downstream to the upstream peer."""
        assert self._sinkpad is not None
        return self._sinkpad.peer_query(query)


@functools.cache
def _build_element_type() -> type:
    """Define the GStreamer element class around :class:`TimestampCorrector`."""
    gi = get_gst()
    Gst = gi.Gst  # noqa: N806
    any_caps = Gst.Caps.new_any()
    copy_flags = (
        Gst.BufferCopyFlags.FLAGS
        | Gst.BufferCopyFlags.TIMESTAMPS
        | Gst.BufferCopyFlags.META
        | Gst.BufferCopyFlags.MEMORY
    )

    def _writable_buffer(buffer: Any) -> Any:
        # Shares the memory blocks; only the buffer metadata is duplicated
        if buffer.mini_object.is_writable():
            return buffer
        return buffer.copy_region(copy_flags, 0, -1)

    class RetimestampElement(Gst.Element):  # type: ignore[misc,name-defined]
        __gtype_name__ = "AioDesktopCastRetimestamp"
        __gstmetadata__ = (
            "Retimestamp",
            "Generic",
            "Retimestamps all buffers flowing through the element with the pipeline's "
            "monotonic running time",
            "aiodesktopcast",
        )
        __gsttemplates__ = (
            Gst.PadTemplate.new("src", Gst.PadDirection.SRC, Gst.PadPresence.ALWAYS, any_caps),
            Gst.PadTemplate.new("sink", Gst.PadDirection.SINK, Gst.PadPresence.ALWAYS, any_caps),
        )

        def __init__(self) -> None:
            super().__init__()
            self.corrector = TimestampCorrector(
                self._current_running_time,
                flow_error=Gst.FlowReturn.ERROR,
                name=self.get_name,
                writable=_writable_buffer,
            )
            guard = self.corrector.guard
            sinkpad = Gst.Pad.new_from_template(self.get_pad_template("sink"), "sink")
            sinkpad.set_chain_function_full(
                guard.wrap(self.corrector.sink_chain, Gst.FlowReturn.ERROR), None
            )
            sinkpad.set_event_function_full(guard.wrap(self.corrector.sink_event, False), None)
            sinkpad.set_query_function_full(guard.wrap(self.corrector.sink_query, False), None)
            srcpad = Gst.Pad.new_from_template(self.get_pad_template("src"), "src")
            srcpad.set_event_function_full(guard.wrap(self.corrector.src_event, False), None)
            srcpad.set_query_function_full(guard.wrap(self.corrector.src_query, False), None)
            self.add_pad(sinkpad)
            self.add_pad(srcpad)
            self.corrector.attach(sinkpad, srcpad)

        def _current_running_time(self) -> int | None:
            running_time = self.get_current_running_time()
            if running_time == Gst.CLOCK_TIME_NONE:
                return None
            return int(running_time)

    gi.GObject.type_register(RetimestampElement)
    return RetimestampElement


def register_retimestamp() -> bool:
    """Register the ``retimestamp`` element with GStreamer.

    Must run before any launch description using the element is parsed.
    Registering twice is harmless.
    """
    gi = get_gst()
    if gi.Gst.ElementFactory.find(RETIMESTAMP_ELEMENT_NAME) is not None:
        return True
    registered: bool = gi.Gst.Element.register(
        None, RETIMESTAMP_ELEMENT_NAME, gi.Gst.Rank.NONE, _build_element_type()
    )
    logger.debug("Registered %s element: %s", RETIMESTAMP_ELEMENT_NAME, registered)
    return registered
