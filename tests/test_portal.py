from __future__ import annotations

import asyncio
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest
from dbus_fast import Message, MessageType, Variant
from dbus_fast.errors import DBusError

from aiodesktopcast.capture.portal import (
    PORTAL_OBJECT_PATH,
    REQUEST_INTERFACE,
    PortalStream,
    ScreenCastSession,
)
from aiodesktopcast.errors import PortalRequestError

SESSION_HANDLE = "/org/freedesktop/portal/desktop/session/1_42/aiodesktopcast"


class _FakeSessionBus:
    """Answers portal calls with a Response signal on the request path."""

    def __init__(self, responses: dict[str, tuple[int, dict[str, Any]]]) -> None:
        self.unique_name = ":1.42"
        self.responses = responses
        self.calls: list[Message] = []
        self.handlers: list[Callable[[Any], None]] = []
        self.error_reply: SimpleNamespace | None = None
        self.disconnected = False

    def add_message_handler(self, handler: Callable[[Any], None]) -> None:
        self.handlers.append(handler)

    def remove_message_handler(self, handler: Callable[[Any], None]) -> None:
        self.handlers.remove(handler)

    def disconnect(self) -> None:
        self.disconnected = True

    async def call(self, message: Message) -> SimpleNamespace:
        self.calls.append(message)
        if message.member == "AddMatch":
            return SimpleNamespace(message_type=MessageType.METHOD_RETURN, body=[])
        if self.error_reply is not None:
            return self.error_reply
        token = message.body[-1]["handle_token"].value
        request_path = f"{PORTAL_OBJECT_PATH}/request/1_42/{token}"
        code, results = self.responses[message.member]
        signal = SimpleNamespace(
            message_type=MessageType.SIGNAL,
            path=request_path,
            interface=REQUEST_INTERFACE,
            member="Response",
            body=[code, results],
        )
        loop = asyncio.get_running_loop()
        for handler in list(self.handlers):
            loop.call_soon(handler, signal)
        return SimpleNamespace(message_type=MessageType.METHOD_RETURN, body=[request_path])

    def portal_calls(self) -> list[Message]:
        return [call for call in self.calls if call.member != "AddMatch"]


def _granting_bus(streams: list[Any]) -> _FakeSessionBus:
    return _FakeSessionBus(
        {
            "CreateSession": (0, {"session_handle": Variant("s", SESSION_HANDLE)}),
            "SelectSources": (0, {}),
            "Start": (0, {"streams": streams}),
        }
    )


@pytest.mark.asyncio
async def test_handshake_returns_granted_streams() -> None:
    bus = _granting_bus(
        [
            (57, {"size": (2560, 1440), "position": (0, 0)}),
            (63, {}),
        ]
    )
    session = ScreenCastSession(bus)  # type: ignore[arg-type]

    assert await session.create() == SESSION_HANDLE
    await session.select_sources()
    streams = await session.start()

    assert streams == [
        PortalStream(node_id=57, size=(2560, 1440), position=(0, 0)),
        PortalStream(node_id=63),
    ]
    assert session.streams == streams
    assert [call.member for call in bus.portal_calls()] == ["CreateSession", "SelectSources", "Start"]
    select = bus.portal_calls()[1]
    assert select.body[0] == SESSION_HANDLE
    options = select.body[-1]
    assert options["multiple"].value is False
    assert options["persist_mode"].value == 0
    # Every request unsubscribes from its Response signal
    assert bus.handlers == []


@pytest.mark.asyncio
async def test_cancelled_request_raises_with_response_code() -> None:
    bus = _granting_bus([])
    bus.responses["SelectSources"] = (1, {})
    session = ScreenCastSession(bus)  # type: ignore[arg-type]
    await session.create()

    with pytest.raises(PortalRequestError) as exc_info:
        await session.select_sources()
    assert exc_info.value.method == "SelectSources"
    assert exc_info.value.response == 1
    assert bus.handlers == []


@pytest.mark.asyncio
async def test_error_reply_raises_dbus_error() -> None:
    bus = _granting_bus([])
    bus.error_reply = SimpleNamespace(
        message_type=MessageType.ERROR,
        error_name="org.freedesktop.DBus.Error.ServiceUnknown",
        body=["The name org.freedesktop.portal.Desktop was not provided"],
    )
    session = ScreenCastSession(bus)  # type: ignore[arg-type]

    with pytest.raises(DBusError):
        await session.create()
    assert bus.handlers == []


def test_close_disconnects_the_bus() -> None:
    bus = _granting_bus([])
    ScreenCastSession(bus).close()  # type: ignore[arg-type]
    assert bus.disconnected
