"""Session-owned records and the read-only views handed to UI collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote

from .errors import InvalidIdentityError

DEFAULT_AVATAR_TEMPLATE = "https://avatars.dicebear.com/api/adventurer-neutral/{name}.svg"
DEFAULT_PLACEHOLDER_AVATAR = "https://avatars.dicebear.com/api/adventurer-neutral/unknown.svg"


def avatar_url(display_name: str, template: str = DEFAULT_AVATAR_TEMPLATE) -> str:
    """Derive an avatar reference from a display name alone."""
    return template.format(name=quote(display_name, safe=""))


def is_image_message(body: str) -> bool:
    """True for a message whose text names a GIF, shown as an image."""
    return body.endswith(".gif")


class SessionState(Enum):
    """Chat session lifecycle states."""

    CONNECTING = "connecting"
    REGISTERING = "registering"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionIdentity:
    """Display name this client registers with.

    Built by the login step before a chat session exists and never changed
    afterwards.
    """

    display_name: str

    @classmethod
    def from_login(cls, raw_name: str) -> SessionIdentity:
        """Validate a name typed at login.

        Raises:
            InvalidIdentityError: If the name is empty or only whitespace.
        """
        if not isinstance(raw_name, str) or not raw_name.strip():
            raise InvalidIdentityError("Display name must not be empty")
        return cls(display_name=raw_name)


@dataclass(frozen=True)
class PresenceEntry:
    """A connected user as last reported by the server."""

    display_name: str
    avatar: str


@dataclass(frozen=True)
class MessageRecord:
    """One received chat message."""

    sender: str
    body: str


@dataclass(frozen=True)
class RenderedMessage:
    """A message joined with its sender's avatar for display."""

    sender: str
    body: str
    avatar: str
    sender_present: bool
    is_image: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of session state at one point in time."""

    state: SessionState
    users: tuple[PresenceEntry, ...]
    messages: tuple[MessageRecord, ...]

    @property
    def user_names(self) -> tuple[str, ...]:
        return tuple(entry.display_name for entry in self.users)

    def rendered_messages(
        self, placeholder: str = DEFAULT_PLACEHOLDER_AVATAR
    ) -> list[RenderedMessage]:
        """Messages joined with the presence list for display.

        Senders missing from the presence list get ``placeholder``.
        """
        avatars = {entry.display_name: entry.avatar for entry in self.users}
        return [
            RenderedMessage(
                sender=record.sender,
                body=record.body,
                avatar=avatars.get(record.sender, placeholder),
                sender_present=record.sender in avatars,
                is_image=is_image_message(record.body),
            )
            for record in self.messages
        ]
