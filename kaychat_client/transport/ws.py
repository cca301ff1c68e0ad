"""WebSocket helpers for the KayChat transport channel."""

from __future__ import annotations

import asyncio
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    KayChatConnectionError,
    KayChatHandshakeError,
    KayChatTimeout,
)

WS_SCHEMES = ("ws", "wss")

# Seconds the library waits for the closing handshake.
CLOSE_TIMEOUT = 5.0


def check_ws_url(url: str) -> str:
    """Return ``url`` if it is a ``ws://`` or ``wss://`` URL with a host.

    Raises:
        KayChatHandshakeError: For any other URL
    """
    parts = urlsplit(url) if isinstance(url, str) else None
    if parts is None or parts.scheme not in WS_SCHEMES or not parts.netloc:
        raise KayChatHandshakeError(f"Not a ws:// or wss:// URL: {url!r}")
    return url


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to the chat server WebSocket endpoint.

    Chat frames are JSON text of unbounded size, so the library's message
    size limit is disabled.

    Args:
        url: Full ``ws://`` or ``wss://`` endpoint URL
        ping_interval: Interval for keepalive ping frames, None disables them
        timeout: Connection timeout
    """
    check_ws_url(url)
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=CLOSE_TIMEOUT,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise KayChatTimeout(f"Connection to {url} timed out after {timeout}s") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise KayChatHandshakeError(f"WebSocket handshake with {url} failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise KayChatConnectionError(f"Cannot reach {url}: {err}") from err
