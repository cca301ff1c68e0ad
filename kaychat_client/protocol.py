"""Wire codec for KayChat frames.

This module is the only place that knows the wire field names. Frames are
JSON objects of the form::

    {"messageType": "register" | "users" | "message",
     "dataArray": [str, ...],   # users only
     "data": str}               # register / message only

Inbound ``message`` frames carry a second, separately encoded JSON document
in ``data``: ``{"from": str, "message": str}``. That nested payload is decoded
by :func:`decode_chat_payload`, never by :func:`decode`.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import (
    ChatPayloadDecodeError,
    DecodeError,
    EncodeError,
    EnvelopeDecodeError,
    UnknownMessageTypeError,
)

FIELD_MESSAGE_TYPE = "messageType"
FIELD_DATA_ARRAY = "dataArray"
FIELD_DATA = "data"

CHAT_FIELD_SENDER = "from"
CHAT_FIELD_BODY = "message"

_SEPARATORS = (",", ":")


class MessageType(Enum):
    """Envelope discriminant values."""

    REGISTER = "register"
    USERS = "users"
    MESSAGE = "message"


@dataclass(frozen=True)
class Envelope:
    """Decoded outer frame.

    Attributes:
        message_type: Discriminant selecting which payload field is meaningful.
        data: Display name (register) or free text (message).
        data_array: Ordered display names (users).
    """

    message_type: MessageType
    data: str | None = None
    data_array: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.data_array, list):
            object.__setattr__(self, "data_array", tuple(self.data_array))


@dataclass(frozen=True)
class ChatPayload:
    """Nested payload of an inbound message frame."""

    sender: str
    body: str


def build_register(display_name: str) -> Envelope:
    """Build the frame announcing this client's display name."""
    return Envelope(message_type=MessageType.REGISTER, data=display_name)


def build_users(names: Iterable[str]) -> Envelope:
    """Build a presence frame (server direction, used by tooling and tests)."""
    return Envelope(message_type=MessageType.USERS, data_array=tuple(names))


def build_message(text: str) -> Envelope:
    """Build an outbound chat frame carrying only the body text.

    The server attributes the sender from the registered connection.
    """
    return Envelope(message_type=MessageType.MESSAGE, data=text)


def _check_invariants(envelope: Envelope) -> None:
    """Raise EncodeError when the payload does not fit the discriminant."""
    kind = envelope.message_type
    if not isinstance(kind, MessageType):
        raise EncodeError(f"Invalid message type: {kind!r}")

    if kind is MessageType.USERS:
        if envelope.data_array is None:
            raise EncodeError("users frame requires data_array")
        if envelope.data is not None:
            raise EncodeError("users frame must not carry data")
        if not isinstance(envelope.data_array, tuple):
            raise EncodeError(
                f"users data_array must be a list or tuple of str, got "
                f"{type(envelope.data_array).__name__}"
            )
        for idx, name in enumerate(envelope.data_array):
            if not isinstance(name, str):
                raise EncodeError(
                    f"users entry at index {idx} must be str, got {type(name).__name__}"
                )
        return

    if envelope.data is None:
        raise EncodeError(f"{kind.value} frame requires data")
    if not isinstance(envelope.data, str):
        raise EncodeError(f"{kind.value} data must be str")
    if envelope.data_array is not None:
        raise EncodeError(f"{kind.value} frame must not carry data_array")


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to wire text.

    Raises:
        EncodeError: If the payload violates the discriminant's invariants.
    """
    _check_invariants(envelope)

    frame: dict[str, Any] = {FIELD_MESSAGE_TYPE: envelope.message_type.value}
    if envelope.data_array is not None:
        frame[FIELD_DATA_ARRAY] = list(envelope.data_array)
    if envelope.data is not None:
        frame[FIELD_DATA] = envelope.data
    return json.dumps(frame, separators=_SEPARATORS, ensure_ascii=False)


def _load_object(text: str | bytes, error_cls: type[DecodeError]) -> dict[str, Any]:
    """Parse JSON text that must hold an object."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as err:
            raise error_cls(f"Frame is not valid UTF-8: {err}") from err
    if not isinstance(text, str):
        raise error_cls(f"Frame must be text, got {type(text).__name__}")
    try:
        data = json.loads(text)
    except ValueError as err:
        raise error_cls(f"Invalid JSON: {err}") from err
    if not isinstance(data, dict):
        raise error_cls(f"Expected JSON object, got {type(data).__name__}")
    return data


def decode(text: str | bytes) -> Envelope:
    """Parse wire text into an Envelope.

    The kind is taken from ``messageType`` alone; the payload fields are then
    checked against it.

    Raises:
        UnknownMessageTypeError: For a well-formed frame with an unrecognized
            discriminant.
        EnvelopeDecodeError: For malformed JSON or a payload that does not
            match the discriminant.
    """
    frame = _load_object(text, EnvelopeDecodeError)

    raw_type = frame.get(FIELD_MESSAGE_TYPE)
    if raw_type is None:
        raise EnvelopeDecodeError(f"Missing {FIELD_MESSAGE_TYPE}")
    if not isinstance(raw_type, str):
        raise EnvelopeDecodeError(f"{FIELD_MESSAGE_TYPE} must be a string")
    try:
        kind = MessageType(raw_type)
    except ValueError:
        raise UnknownMessageTypeError(raw_type) from None

    # Explicit nulls are treated as absent.
    data = frame.get(FIELD_DATA)
    data_array = frame.get(FIELD_DATA_ARRAY)

    if kind is MessageType.USERS:
        if data_array is None:
            raise EnvelopeDecodeError(f"users frame requires {FIELD_DATA_ARRAY}")
        if not isinstance(data_array, list):
            raise EnvelopeDecodeError(f"{FIELD_DATA_ARRAY} must be a list")
        if data is not None:
            raise EnvelopeDecodeError(f"users frame must not carry {FIELD_DATA}")
        for idx, name in enumerate(data_array):
            if not isinstance(name, str):
                raise EnvelopeDecodeError(
                    f"{FIELD_DATA_ARRAY} entry at index {idx} must be a string"
                )
        return Envelope(message_type=kind, data_array=tuple(data_array))

    if data is None:
        raise EnvelopeDecodeError(f"{kind.value} frame requires {FIELD_DATA}")
    if not isinstance(data, str):
        raise EnvelopeDecodeError(f"{FIELD_DATA} must be a string")
    if data_array is not None:
        raise EnvelopeDecodeError(f"{kind.value} frame must not carry {FIELD_DATA_ARRAY}")
    return Envelope(message_type=kind, data=data)


def encode_chat_payload(payload: ChatPayload) -> str:
    """Serialize a chat payload to the nested JSON text a server sends."""
    return json.dumps(
        {CHAT_FIELD_SENDER: payload.sender, CHAT_FIELD_BODY: payload.body},
        separators=_SEPARATORS,
        ensure_ascii=False,
    )


def decode_chat_payload(text: str) -> ChatPayload:
    """Decode the nested payload of an inbound message frame.

    Raises:
        ChatPayloadDecodeError: If the text is not a ``{"from", "message"}``
            object of strings.
    """
    data = _load_object(text, ChatPayloadDecodeError)

    sender = data.get(CHAT_FIELD_SENDER)
    body = data.get(CHAT_FIELD_BODY)
    if not isinstance(sender, str):
        raise ChatPayloadDecodeError(f"{CHAT_FIELD_SENDER!r} must be a string")
    if not isinstance(body, str):
        raise ChatPayloadDecodeError(f"{CHAT_FIELD_BODY!r} must be a string")
    return ChatPayload(sender=sender, body=body)
