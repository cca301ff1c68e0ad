"""WebSocket client wrapper for the KayChat transport channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import KayChatConnectionError, TransmitError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE = 256
DEFAULT_FLUSH_TIMEOUT = 2.0


class KayChatWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class KayChatWsMessage:
    """Normalized WebSocket message payload."""

    type: KayChatWsMessageType
    data: str | None = None


class KayChatWsClient:
    """Wrapper around the websockets library for one chat connection.

    Outbound frames go through a bounded queue drained by a writer task, so
    :meth:`send` never blocks. Frames queued before :meth:`connect` are
    flushed once the connection is up.
    """

    def __init__(self, *, max_queue: int = DEFAULT_MAX_QUEUE) -> None:
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=max_queue)
        self._writer_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        """True once connected and until closed."""
        return self._ws is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def queued(self) -> int:
        """Number of outbound frames waiting to be written."""
        return self._outbox.qsize()

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the chat server and start the writer task."""
        if self._closed:
            raise KayChatConnectionError("WebSocket client is closed")
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )
        self._writer_task = asyncio.create_task(self._drain_outbox())

    def send(self, text: str) -> None:
        """Queue a text frame for transmission without waiting.

        Raises:
            TransmitError: If the client is closed or the queue is full
        """
        if self._closed:
            raise TransmitError("WebSocket client is closed")
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull as err:
            raise TransmitError(
                f"Outbound queue full ({self._outbox.maxsize} frames)"
            ) from err

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the socket."""
        await self._outbox.join()

    async def close(self, *, flush_timeout: float = DEFAULT_FLUSH_TIMEOUT) -> None:
        """Close the websocket connection.

        Queued frames get ``flush_timeout`` seconds to go out first. The writer
        task is stopped and the socket closed even if this call is cancelled
        while waiting for the flush.
        """
        self._closed = True

        try:
            if self._writer_task is not None:
                try:
                    await asyncio.wait_for(self.flush(), timeout=flush_timeout)
                except TimeoutError:
                    _LOGGER.warning(
                        "Dropping %d unsent frames on close", self._outbox.qsize()
                    )
        finally:
            await self._stop_writer()
            if self._ws is not None:
                await self._ws.close()

    async def _stop_writer(self) -> None:
        writer, self._writer_task = self._writer_task, None
        if writer is None:
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def _drain_outbox(self) -> None:
        """Writer task: move queued frames onto the socket in order."""
        while True:
            text = await self._outbox.get()
            try:
                if self._ws is None:
                    continue
                await self._ws.send(text)
            except ConnectionClosed:
                _LOGGER.warning("Frame dropped: connection closed")
            except WebSocketException as err:
                _LOGGER.warning("Frame dropped: %s", err)
            finally:
                self._outbox.task_done()

    def __aiter__(self) -> AsyncIterator[KayChatWsMessage]:
        if self._ws is None:
            raise KayChatConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[KayChatWsMessage]:
        if self._ws is None:
            raise KayChatConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield KayChatWsMessage(type=KayChatWsMessageType.CLOSED)
        except Exception:
            _LOGGER.exception("WebSocket receive failed")
            yield KayChatWsMessage(type=KayChatWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield KayChatWsMessage(type=KayChatWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> KayChatWsMessage | None:
        """Normalize received frames; the chat protocol is text only."""
        if isinstance(msg, bytes):
            _LOGGER.debug("Ignoring %d-byte binary frame", len(msg))
            return None
        if isinstance(msg, str):
            return KayChatWsMessage(KayChatWsMessageType.TEXT, msg)
        return KayChatWsMessage(KayChatWsMessageType.TEXT, str(msg))
