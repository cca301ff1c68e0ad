"""Chat session state machine.

A :class:`ChatSession` registers this client's display name, applies inbound
frames to its presence list and message log, and serializes outbound chat
text. It owns no I/O: frames arrive through an :class:`EventRelay`
subscription and leave through a transport exposing a non-blocking
``send(text)``.

States::

    CONNECTING -> REGISTERING -> ACTIVE
         \\             \\           \\
          +-------------+-----------+--> CLOSED

There is no registration acknowledgement frame; the first valid ``users`` or
``message`` frame is what moves the session to ACTIVE.

Transitions are not reentrant. Drive a session from one event loop only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Protocol

from . import protocol
from .config import AvatarConfig
from .errors import (
    ChatPayloadDecodeError,
    DecodeError,
    EncodeError,
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
from .protocol import MessageType

_LOGGER = logging.getLogger(__name__)

_SUBMIT_STATES = frozenset({SessionState.REGISTERING, SessionState.ACTIVE})


class FrameSender(Protocol):
    """Transport side used by the session."""

    def send(self, text: str) -> None: ...


class ChatSession:
    """Client-side chat session.

    Usage:
        session = ChatSession(SessionIdentity("alice"), ws_client)
        session.on_update(render)
        ...
        session.submit("hello")
        session.close()
    """

    def __init__(
        self,
        identity: SessionIdentity,
        transport: FrameSender,
        *,
        relay: EventRelay | None = None,
        avatars: AvatarConfig | None = None,
        history: Iterable[MessageRecord] = (),
    ) -> None:
        """Subscribe to inbound frames and send the register frame.

        Args:
            identity: Display name chosen at login
            transport: Outbound side of the connection
            relay: Source of inbound frames (process-wide relay by default)
            avatars: Avatar derivation settings
            history: Messages carried over from an earlier session
        """
        self._identity = identity
        self._transport = transport
        self._relay = relay if relay is not None else get_event_relay()
        self._avatars = avatars or AvatarConfig()

        self._state = SessionState.CONNECTING
        self._users: tuple[PresenceEntry, ...] = ()
        self._avatar_index: dict[str, str] = {}
        self._messages: list[MessageRecord] = list(history)

        self._update_callback: Callable[[SessionSnapshot], None] | None = None
        self._state_callback: Callable[[SessionState], None] | None = None

        # Subscribe before registering so no reply can be missed.
        self._subscription: Subscription | None = self._relay.subscribe(
            self.handle_frame
        )
        self._register()

    # -------------------------------------------------------------------------
    # Public API: Views
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> SessionIdentity:
        return self._identity

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def users(self) -> tuple[PresenceEntry, ...]:
        """Current presence list in server order."""
        return self._users

    @property
    def messages(self) -> tuple[MessageRecord, ...]:
        """Received messages in arrival order."""
        return tuple(self._messages)

    def snapshot(self) -> SessionSnapshot:
        """Immutable view of the current state."""
        return SessionSnapshot(
            state=self._state,
            users=self._users,
            messages=tuple(self._messages),
        )

    def avatar_for(self, sender: str) -> str:
        """Avatar of a present user, or the placeholder for an absent one."""
        return self._avatar_index.get(sender, self._avatars.placeholder)

    def rendered_messages(self) -> list[RenderedMessage]:
        """Messages joined with presence for display.

        Senders that have left since their message arrived get the
        placeholder avatar.
        """
        return self.snapshot().rendered_messages(self._avatars.placeholder)

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_update(self, callback: Callable[[SessionSnapshot], None]) -> None:
        """Register callback invoked with a snapshot after each accepted change."""
        self._update_callback = callback

    def on_state_changed(self, callback: Callable[[SessionState], None]) -> None:
        """Register callback for lifecycle state changes."""
        self._state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Intents
    # -------------------------------------------------------------------------

    def handle_frame(self, text: str) -> bool:
        """Apply one inbound frame.

        Returns:
            True if presence, messages or state changed
        """
        if self._state is SessionState.CLOSED:
            _LOGGER.debug("[%s] Frame ignored: session closed", self._name)
            return False

        try:
            envelope = protocol.decode(text)
        except UnknownMessageTypeError as err:
            _LOGGER.debug(
                "[%s] Ignoring unknown message type: %s", self._name, err.message_type
            )
            return False
        except DecodeError as err:
            _LOGGER.warning("[%s] Dropping malformed frame: %s", self._name, err.reason)
            return False

        if envelope.message_type is MessageType.USERS:
            self._apply_users(envelope.data_array or ())
        elif envelope.message_type is MessageType.MESSAGE:
            try:
                payload = protocol.decode_chat_payload(envelope.data or "")
            except ChatPayloadDecodeError as err:
                _LOGGER.warning(
                    "[%s] Dropping message with malformed payload: %s",
                    self._name,
                    err.reason,
                )
                return False
            self._messages.append(MessageRecord(sender=payload.sender, body=payload.body))
            _LOGGER.debug("[%s] Message from %s", self._name, payload.sender)
        else:
            _LOGGER.debug(
                "[%s] Ignoring %s frame", self._name, envelope.message_type.value
            )
            return False

        self._set_state(SessionState.ACTIVE)
        self._notify_update()
        return True

    def submit(self, text: str) -> bool:
        """Send chat text to the server.

        Fire-and-forget: nothing waits for the server, and no local state is
        changed. The server echoes the message back as a ``message`` frame.

        Returns:
            True if the transport accepted the frame, False otherwise

        Raises:
            SessionStateError: If the session is not registering or active
        """
        if self._state not in _SUBMIT_STATES:
            raise SessionStateError(
                f"Cannot send in state {self._state.value}"
            )
        return self._transmit(protocol.build_message(text))

    def close(self) -> None:
        """Detach from the relay and enter the terminal CLOSED state."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._set_state(SessionState.CLOSED)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    @property
    def _name(self) -> str:
        return self._identity.display_name

    def _register(self) -> None:
        """Send the register frame; proceed even if the transport refuses it."""
        if self._transmit(protocol.build_register(self._identity.display_name)):
            _LOGGER.debug("[%s] Register sent", self._name)
        # A reply may already have arrived while sending.
        if self._state is SessionState.CONNECTING:
            self._set_state(SessionState.REGISTERING)

    def _transmit(self, envelope: protocol.Envelope) -> bool:
        try:
            frame = protocol.encode(envelope)
        except EncodeError as err:
            _LOGGER.error("[%s] Cannot encode frame: %s", self._name, err)
            return False
        try:
            self._transport.send(frame)
        except TransmitError as err:
            _LOGGER.warning(
                "[%s] Failed to send %s frame: %s",
                self._name,
                envelope.message_type.value,
                err,
            )
            return False
        return True

    def _apply_users(self, names: Iterable[str]) -> None:
        """Replace the presence list wholesale."""
        self._users = tuple(
            PresenceEntry(display_name=name, avatar=self._avatars.for_name(name))
            for name in names
        )
        self._avatar_index = {entry.display_name: entry.avatar for entry in self._users}
        _LOGGER.debug("[%s] Presence: %d users", self._name, len(self._users))

    def _set_state(self, state: SessionState) -> None:
        """Update lifecycle state and notify callback."""
        if self._state is state:
            return
        _LOGGER.debug("[%s] State: %s → %s", self._name, self._state.value, state.value)
        self._state = state
        if self._state_callback:
            try:
                self._state_callback(state)
            except Exception as err:
                _LOGGER.exception("[%s] State callback error: %s", self._name, err)

    def _notify_update(self) -> None:
        if self._update_callback:
            try:
                self._update_callback(self.snapshot())
            except Exception as err:
                _LOGGER.exception("[%s] Update callback error: %s", self._name, err)
