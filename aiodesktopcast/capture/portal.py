"""Client for the xdg-desktop-portal ScreenCast interface.

Every portal method returns a Request object path; the actual result arrives
later as a ``Response`` signal on that path. The signal subscription is set up
before the method call so a fast portal cannot answer before we listen.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus
from dbus_fast.errors import DBusError

from aiodesktopcast.errors import PortalRequestError

logger = logging.getLogger(__name__)

PORTAL_BUS_NAME = "org.freedesktop.portal.Desktop"
PORTAL_OBJECT_PATH = "/org/freedesktop/portal/desktop"
SCREENCAST_INTERFACE = "org.freedesktop.portal.ScreenCast"
REQUEST_INTERFACE = "org.freedesktop.portal.Request"

SOURCE_TYPE_MONITOR = 1
SOURCE_TYPE_WINDOW = 2
CURSOR_MODE_HIDDEN = 1
PERSIST_MODE_DO_NOT = 0


@dataclass(frozen=True)
class PortalStream:
    """A PipeWire stream granted by the portal."""

    node_id: int
    size: tuple[int, int] | None = None
    position: tuple[int, int] | None = None


def _new_token() -> str:
    return f"aiodesktopcast_{uuid.uuid4().hex}"


def _unwrap(value: Any) -> Any:
    return value.value if isinstance(value, Variant) else value


class ScreenCastSession:
    """A ScreenCast portal session bound to one session bus connection.

    The granted streams stay valid only while the bus connection is open, so
    the session must be kept alive for as long as the pipeline captures.
    """

    def __init__(self, bus: MessageBus) -> None:
        """Initialize with a connected session bus."""
        self._bus = bus
        self._handle: str | None = None
        self.streams: list[PortalStream] = []

    def _request_path(self, token: str) -> str:
        sender = (self._bus.unique_name or "").lstrip(":").replace(".", "_")
        return f"{PORTAL_OBJECT_PATH}/request/{sender}/{token}"

    async def _add_match(self, rule: str) -> None:
        reply = await self._bus.call(
            Message(
                destination="org.freedesktop.DBus",
                path="/org/freedesktop/DBus",
                interface="org.freedesktop.DBus",
                member="AddMatch",
                signature="s",
                body=[rule],
            )
        )
        if reply is not None and reply.message_type == MessageType.ERROR:
            raise DBusError(reply.error_name, str(reply.body[0]) if reply.body else "")

    async def _request(
        self, method: str, signature: str, args: list[Any], options: dict[str, Variant]
    ) -> dict[str, Any]:
        """Call a portal method and wait for its Response signal."""
        token = _new_token()
        options = {**options, "handle_token": Variant("s", token)}
        request_path = self._request_path(token)
        response: asyncio.Future[list[Any]] = asyncio.get_running_loop().create_future()

        def _on_message(message: Message) -> None:
            if (
                message.message_type == MessageType.SIGNAL
                and message.path == request_path
                and message.interface == REQUEST_INTERFACE
                and message.member == "Response"
                and not response.done()
            ):
                response.set_result(message.body)

        self._bus.add_message_handler(_on_message)
        try:
            await self._add_match(
                f"type='signal',interface='{REQUEST_INTERFACE}',"
                f"member='Response',path='{request_path}'"
            )
            reply = await self._bus.call(
                Message(
                    destination=PORTAL_BUS_NAME,
                    path=PORTAL_OBJECT_PATH,
                    interface=SCREENCAST_INTERFACE,
                    member=method,
                    signature=signature,
                    body=[*args, options],
                )
            )
            if reply is None or reply.message_type == MessageType.ERROR:
                error_name = reply.error_name if reply is not None else "org.freedesktop.DBus.Error.NoReply"
                raise DBusError(error_name, str(reply.body[0]) if reply and reply.body else "")
            code, results = await response
        finally:
            self._bus.remove_message_handler(_on_message)

        logger.debug("Portal %s answered with response %s", method, code)
        if code != 0:
            raise PortalRequestError(method, code)
        return {key: _unwrap(value) for key, value in results.items()}

    async def create(self) -> str:
        """Create the portal session and return its handle."""
        results = await self._request(
            "CreateSession",
            "a{sv}",
            [],
            {"session_handle_token": Variant("s", _new_token())},
        )
        self._handle = str(results["session_handle"])
        return self._handle

    async def select_sources(self) -> None:
        """Offer the user a single monitor or window, cursor hidden, not persisted."""
        assert self._handle is not None
        await self._request(
            "SelectSources",
            "oa{sv}",
            [self._handle],
            {
                "types": Variant("u", SOURCE_TYPE_MONITOR | SOURCE_TYPE_WINDOW),
                "multiple": Variant("b", False),
                "cursor_mode": Variant("u", CURSOR_MODE_HIDDEN),
                "persist_mode": Variant("u", PERSIST_MODE_DO_NOT),
            },
        )

    async def start(self) -> list[PortalStream]:
        """Start the session and return the streams the user granted."""
        assert self._handle is not None
        results = await self._request("Start", "osa{sv}", [self._handle, ""], {})
        streams: list[PortalStream] = []
        for node_id, properties in results.get("streams", []):
            size = _unwrap(properties.get("size"))
            position = _unwrap(properties.get("position"))
            stream = PortalStream(
                node_id=int(node_id),
                size=tuple(size) if size is not None else None,
                position=tuple(position) if position is not None else None,
            )
            logger.debug(
                "Portal stream node=%d size=%s position=%s",
                stream.node_id,
                stream.size,
                stream.position,
            )
            streams.append(stream)
        self.streams = streams
        return streams

    def close(self) -> None:
        """Drop the bus connection, which ends the portal session."""
        self._bus.disconnect()


async def open_screencast_session() -> ScreenCastSession:
    """Negotiate a screen capture with the user through the portal.

    Raises:
        DBusError: If the portal is not available on the session bus.
        PortalRequestError: If the user cancelled or the portal refused.
    """
    bus = await MessageBus(bus_type=BusType.SESSION).connect()
    session = ScreenCastSession(bus)
    try:
        await session.create()
        await session.select_sources()
        await session.start()
    except BaseException:
        session.close()
        raise
    return session
