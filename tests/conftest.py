"""Pytest configuration and fixtures for kaychat_client tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from kaychat_client.errors import TransmitError
from kaychat_client.event_bus import EventRelay
from kaychat_client.models import SessionIdentity
from kaychat_client.transport import KayChatWsMessage, KayChatWsMessageType


class FakeTransport:
    """Records outbound frames; can be told to refuse them."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.refuse = False

    def send(self, text: str) -> None:
        if self.refuse:
            raise TransmitError("transport not ready")
        self.sent.append(text)

    @property
    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]


class FakeWsClient(FakeTransport):
    """Stand-in for KayChatWsClient used by ChatClient tests.

    Yields ``frames`` as TEXT messages, then CLOSED unless ``hold_open`` is
    set, in which case iteration blocks until the client is closed.
    """

    def __init__(
        self,
        frames: list[str] | None = None,
        *,
        connect_error: Exception | None = None,
        hold_open: bool = False,
    ) -> None:
        super().__init__()
        self.frames = frames or []
        self.connect_error = connect_error
        self.hold_open = hold_open
        self.connected_url: str | None = None
        self.closed = False
        self._released = asyncio.Event()

    async def connect(self, url: str, **kwargs: Any) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_url = url

    async def close(self, *, flush_timeout: float = 2.0) -> None:
        self.closed = True
        self._released.set()

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        for frame in self.frames:
            yield KayChatWsMessage(KayChatWsMessageType.TEXT, frame)
        if self.hold_open:
            await self._released.wait()
        yield KayChatWsMessage(KayChatWsMessageType.CLOSED)


def users_frame(*names: str) -> str:
    return json.dumps({"messageType": "users", "dataArray": list(names)})


def chat_frame(sender: str, body: str) -> str:
    return json.dumps(
        {"messageType": "message", "data": json.dumps({"from": sender, "message": body})}
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def relay() -> EventRelay:
    """A relay private to one test."""
    return EventRelay()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def alice() -> SessionIdentity:
    return SessionIdentity("alice")
