"""Client core for the KayChat WebSocket chat."""

__version__ = "0.1.0"

from .client import ChatClient
from .config import AvatarConfig, ClientConfig, ReconnectPolicy, load_config
from .errors import (
    ChatPayloadDecodeError,
    CodecError,
    ConfigError,
    DecodeError,
    EncodeError,
    EnvelopeDecodeError,
    InvalidIdentityError,
    KayChatClientError,
    KayChatConnectionError,
    KayChatHandshakeError,
    KayChatTimeout,
    SessionStateError,
    TransmitError,
    UnknownMessageTypeError,
)
from .event_bus import EventRelay, Subscription, get_event_relay
from .models import (
    MessageRecord,
    PresenceEntry,
    RenderedMessage,
    SessionIdentity,
    SessionSnapshot,
    SessionState,
)
from .protocol import (
    ChatPayload,
    Envelope,
    MessageType,
    build_message,
    build_register,
    build_users,
    decode,
    decode_chat_payload,
    encode,
    encode_chat_payload,
)
from .session import ChatSession
from .transport import (
    KayChatWsClient,
    KayChatWsMessage,
    KayChatWsMessageType,
    connect_websocket,
)

__all__ = [
    "AvatarConfig",
    "ChatClient",
    "ChatPayload",
    "ChatPayloadDecodeError",
    "ChatSession",
    "ClientConfig",
    "CodecError",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "Envelope",
    "EnvelopeDecodeError",
    "EventRelay",
    "InvalidIdentityError",
    "KayChatClientError",
    "KayChatConnectionError",
    "KayChatHandshakeError",
    "KayChatTimeout",
    "KayChatWsClient",
    "KayChatWsMessage",
    "KayChatWsMessageType",
    "MessageRecord",
    "MessageType",
    "PresenceEntry",
    "ReconnectPolicy",
    "RenderedMessage",
    "SessionIdentity",
    "SessionSnapshot",
    "SessionState",
    "SessionStateError",
    "Subscription",
    "TransmitError",
    "UnknownMessageTypeError",
    "__version__",
    "build_message",
    "build_register",
    "build_users",
    "connect_websocket",
    "decode",
    "decode_chat_payload",
    "encode",
    "encode_chat_payload",
    "get_event_relay",
    "load_config",
]
