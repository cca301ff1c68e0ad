"""Test ChatSession state machine."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

import pytest

from kaychat_client import ChatSession
from kaychat_client.config import AvatarConfig
from kaychat_client.errors import SessionStateError
from kaychat_client.models import (
    DEFAULT_PLACEHOLDER_AVATAR,
    MessageRecord,
    PresenceEntry,
    SessionIdentity,
    SessionState,
)

from .conftest import chat_frame, users_frame


@pytest.fixture
def session(alice, transport, relay) -> ChatSession:
    return ChatSession(alice, transport, relay=relay)


class TestConstruction:
    """Tests for the register handshake."""

    def test_sends_register_and_enters_registering(self, session, transport):
        assert transport.sent == ['{"messageType":"register","data":"alice"}']
        assert session.state is SessionState.REGISTERING
        assert session.users == ()
        assert session.messages == ()

    def test_subscribes_before_register(self, alice, relay):
        """A reply published while the register frame is sent is not lost."""

        class EchoTransport:
            def send(self, text: str) -> None:
                relay.publish(users_frame("alice"))

        session = ChatSession(alice, EchoTransport(), relay=relay)

        assert [u.display_name for u in session.users] == ["alice"]
        assert session.state is SessionState.ACTIVE

    def test_transmit_failure_is_not_fatal(self, alice, transport, relay, caplog):
        transport.refuse = True

        with caplog.at_level(logging.WARNING):
            session = ChatSession(alice, transport, relay=relay)

        assert session.state is SessionState.REGISTERING
        assert "Failed to send register frame" in caplog.text

    def test_uses_default_relay(self, alice, transport):
        from kaychat_client.event_bus import get_event_relay

        session = ChatSession(alice, transport)
        try:
            before = len(session.users)
            get_event_relay().publish(users_frame("alice", "bob"))
            assert len(session.users) == before + 2
        finally:
            session.close()


class TestPresence:
    """Tests for users frames."""

    def test_users_frame_activates_session(self, session, relay):
        relay.publish(users_frame("alice", "bob"))

        assert session.state is SessionState.ACTIVE
        assert [u.display_name for u in session.users] == ["alice", "bob"]

    def test_latest_frame_replaces_presence(self, session):
        """Presence is replaced, never merged."""
        session.handle_frame(users_frame("alice", "bob", "carol"))
        session.handle_frame(users_frame("dave", "alice"))

        assert [u.display_name for u in session.users] == ["dave", "alice"]

    def test_empty_users_frame_clears_presence(self, session):
        session.handle_frame(users_frame("alice", "bob"))
        assert session.handle_frame(users_frame()) is True
        assert session.users == ()

    def test_avatar_derived_from_name(self, session):
        session.handle_frame(users_frame("bob"))

        assert session.users == (
            PresenceEntry(
                display_name="bob",
                avatar="https://avatars.dicebear.com/api/adventurer-neutral/bob.svg",
            ),
        )

    def test_custom_avatar_template(self, alice, transport, relay):
        avatars = AvatarConfig(template="https://img.example/{name}.png")
        session = ChatSession(alice, transport, relay=relay, avatars=avatars)

        session.handle_frame(users_frame("bob smith"))

        assert session.users[0].avatar == "https://img.example/bob%20smith.png"

    def test_users_do_not_touch_messages(self, session):
        session.handle_frame(chat_frame("bob", "hi"))
        session.handle_frame(users_frame("alice"))

        assert session.messages == (MessageRecord(sender="bob", body="hi"),)


class TestMessages:
    """Tests for message frames."""

    def test_appends_in_arrival_order(self, session):
        session.handle_frame(chat_frame("bob", "one"))
        session.handle_frame(chat_frame("carol", "two"))
        session.handle_frame(chat_frame("bob", "three"))

        assert session.messages == (
            MessageRecord("bob", "one"),
            MessageRecord("carol", "two"),
            MessageRecord("bob", "three"),
        )

    def test_message_before_users_activates(self, session):
        """Any valid frame confirms registration."""
        assert session.handle_frame(chat_frame("bob", "hi")) is True
        assert session.state is SessionState.ACTIVE

    def test_sender_absent_from_presence(self, session):
        """Messages are kept even when their sender is not present."""
        session.handle_frame(users_frame("alice"))
        session.handle_frame(chat_frame("ghost", "boo"))

        assert session.messages == (MessageRecord("ghost", "boo"),)

    def test_malformed_payload_dropped(self, session, caplog):
        """A bad nested payload leaves earlier state intact."""
        session.handle_frame(users_frame("alice", "bob"))
        session.handle_frame(chat_frame("bob", "hi"))
        before = session.snapshot()

        bad = json.dumps({"messageType": "message", "data": "{not json"})
        with caplog.at_level(logging.WARNING):
            assert session.handle_frame(bad) is False

        assert session.snapshot() == before
        assert "malformed payload" in caplog.text

    def test_malformed_envelope_dropped(self, session, caplog):
        session.handle_frame(users_frame("alice"))
        before = session.snapshot()

        with caplog.at_level(logging.WARNING):
            assert session.handle_frame("garbage") is False

        assert session.snapshot() == before
        assert "malformed frame" in caplog.text


class TestIgnoredFrames:
    """Frames that must not change state."""

    def test_unknown_message_type(self, session):
        assert session.handle_frame('{"messageType":"typing","data":"bob"}') is False
        assert session.state is SessionState.REGISTERING

    def test_register_echo(self, session):
        assert session.handle_frame('{"messageType":"register","data":"bob"}') is False
        assert session.state is SessionState.REGISTERING
        assert session.users == ()

    def test_frames_after_close(self, session):
        session.close()
        assert session.handle_frame(users_frame("alice")) is False
        assert session.users == ()


class TestSubmit:
    """Tests for outbound chat text."""

    def test_submit_before_users(self, session, transport):
        """Sending is allowed while still registering."""
        assert session.submit("hello") is True
        assert transport.sent_json[-1] == {"messageType": "message", "data": "hello"}

    def test_submit_does_not_change_state(self, session):
        session.handle_frame(users_frame("alice"))
        before = session.snapshot()

        session.submit("hello")

        assert session.snapshot() == before

    def test_submit_transmit_failure(self, session, transport, caplog):
        transport.refuse = True

        with caplog.at_level(logging.WARNING):
            assert session.submit("hello") is False

        assert session.state is SessionState.REGISTERING
        assert "Failed to send message frame" in caplog.text

    def test_submit_after_close(self, session):
        session.close()
        with pytest.raises(SessionStateError, match="closed"):
            session.submit("hello")


class TestClose:
    """Tests for session teardown."""

    def test_close_unsubscribes(self, session, relay):
        assert relay.subscriber_count == 1
        session.close()
        assert relay.subscriber_count == 0
        assert session.state is SessionState.CLOSED

    def test_close_is_idempotent(self, session):
        callback = MagicMock()
        session.on_state_changed(callback)

        session.close()
        session.close()

        callback.assert_called_once_with(SessionState.CLOSED)


class TestCallbacks:
    """Tests for update and state notifications."""

    def test_update_receives_snapshot(self, session):
        callback = MagicMock()
        session.on_update(callback)

        session.handle_frame(users_frame("alice", "bob"))

        snapshot = callback.call_args.args[0]
        assert snapshot.state is SessionState.ACTIVE
        assert snapshot.user_names == ("alice", "bob")

    def test_no_update_for_ignored_frame(self, session):
        callback = MagicMock()
        session.on_update(callback)

        session.handle_frame('{"messageType":"typing"}')

        callback.assert_not_called()

    def test_state_changes_reported_once(self, session):
        callback = MagicMock()
        session.on_state_changed(callback)

        session.handle_frame(users_frame("alice"))
        session.handle_frame(users_frame("alice", "bob"))

        callback.assert_called_once_with(SessionState.ACTIVE)

    def test_callback_error_does_not_break_session(self, session, caplog):
        session.on_update(MagicMock(side_effect=RuntimeError("render failed")))

        with caplog.at_level(logging.ERROR):
            assert session.handle_frame(chat_frame("bob", "hi")) is True

        assert session.messages == (MessageRecord("bob", "hi"),)
        assert "render failed" in caplog.text


class TestRendering:
    """Tests for presence lookups when displaying messages."""

    def test_present_sender_gets_avatar(self, session):
        session.handle_frame(users_frame("bob"))
        session.handle_frame(chat_frame("bob", "hi"))

        (rendered,) = session.rendered_messages()
        assert rendered.avatar == session.users[0].avatar
        assert rendered.sender_present is True

    def test_absent_sender_gets_placeholder(self, session):
        """A sender who left before the next users frame does not break display."""
        session.handle_frame(users_frame("alice", "bob"))
        session.handle_frame(chat_frame("bob", "bye"))
        session.handle_frame(users_frame("alice"))

        (rendered,) = session.rendered_messages()
        assert rendered.sender == "bob"
        assert rendered.avatar == DEFAULT_PLACEHOLDER_AVATAR
        assert rendered.sender_present is False

    def test_history_is_carried(self, alice, transport, relay):
        history = [MessageRecord("bob", "earlier")]
        session = ChatSession(alice, transport, relay=relay, history=history)

        session.handle_frame(chat_frame("bob", "later"))

        assert [m.body for m in session.messages] == ["earlier", "later"]


def test_end_to_end_scenario(transport, relay):
    """Register, presence, inbound message, outbound message."""
    session = ChatSession(SessionIdentity("alice"), transport, relay=relay)
    assert transport.sent[0] == '{"messageType":"register","data":"alice"}'

    relay.publish('{"messageType":"users","dataArray":["alice","bob"]}')
    assert [u.display_name for u in session.users] == ["alice", "bob"]

    relay.publish('{"messageType":"message","data":"{\\"from\\":\\"bob\\",\\"message\\":\\"hi\\"}"}')
    assert session.messages == (MessageRecord(sender="bob", body="hi"),)

    assert session.submit("hello") is True
    assert transport.sent[-1] == '{"messageType":"message","data":"hello"}'
