"""Client error types for the KayChat client core."""

from __future__ import annotations


class KayChatClientError(Exception):
    """Base error for KayChat client failures."""


class KayChatTimeout(KayChatClientError):
    """Timeout while communicating with the chat server."""


class KayChatConnectionError(KayChatClientError):
    """Network connection to the chat server failed."""


class KayChatHandshakeError(KayChatClientError):
    """WebSocket handshake failed."""


class TransmitError(KayChatClientError):
    """The transport refused or failed an outbound frame."""


class CodecError(KayChatClientError):
    """Base error for wire encoding and decoding failures."""


class EncodeError(CodecError):
    """An envelope violates its payload invariants and cannot be encoded."""


class DecodeError(CodecError):
    """Inbound text could not be decoded.

    Attributes:
        reason: Short human-readable description of the failure.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class EnvelopeDecodeError(DecodeError):
    """The outer envelope is malformed."""


class UnknownMessageTypeError(EnvelopeDecodeError):
    """The envelope discriminant is not one this client understands."""

    def __init__(self, message_type: str) -> None:
        super().__init__(f"Unknown messageType: {message_type!r}")
        self.message_type = message_type


class ChatPayloadDecodeError(DecodeError):
    """The nested chat payload of a message envelope is malformed."""


class SessionStateError(KayChatClientError):
    """Operation not permitted in the current session state."""


class InvalidIdentityError(KayChatClientError):
    """A display name was rejected at login."""


class ConfigError(KayChatClientError):
    """Configuration could not be loaded."""
