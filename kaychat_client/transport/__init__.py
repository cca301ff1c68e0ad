"""Transport channel for the KayChat client.

Components:
- ws: WebSocket connection setup
- ws_client: outbound queue, inbound frame iteration
"""

from .ws import CLOSE_TIMEOUT, check_ws_url, connect_websocket
from .ws_client import (
    DEFAULT_FLUSH_TIMEOUT,
    KayChatWsClient,
    KayChatWsMessage,
    KayChatWsMessageType,
)

__all__ = [
    "CLOSE_TIMEOUT",
    "DEFAULT_FLUSH_TIMEOUT",
    "KayChatWsClient",
    "KayChatWsMessage",
    "KayChatWsMessageType",
    "check_ws_url",
    "connect_websocket",
]
