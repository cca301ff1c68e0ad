"""Connection runtime for a KayChat client.

:class:`ChatClient` owns the transport and the current :class:`ChatSession`.
It runs the listener task that publishes inbound frames to the event relay
and, after an unexpected close, reconnects with exponential backoff. A closed
session never reopens: every reconnect builds a new session that re-registers
and inherits the previous message log.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .config import ClientConfig
from .errors import (
    KayChatConnectionError,
    KayChatHandshakeError,
    KayChatTimeout,
    SessionStateError,
)
from .event_bus import EventRelay, get_event_relay
from .models import MessageRecord, SessionIdentity, SessionSnapshot, SessionState
from .session import ChatSession
from .transport import (
    CLOSE_TIMEOUT,
    DEFAULT_FLUSH_TIMEOUT,
    KayChatWsClient,
    KayChatWsMessageType,
)

_LOGGER = logging.getLogger(__name__)

# Outlasts the transport's own flush wait plus the closing handshake.
TRANSPORT_CLOSE_TIMEOUT = DEFAULT_FLUSH_TIMEOUT + CLOSE_TIMEOUT + 1.0


class ChatClient:
    """High-level chat client.

    Usage:
        client = ChatClient(SessionIdentity.from_login("alice"), config)
        client.on_update(render)
        await client.start()
        client.submit("hello")
        await client.close()
    """

    def __init__(
        self,
        identity: SessionIdentity,
        config: ClientConfig | None = None,
        *,
        relay: EventRelay | None = None,
    ) -> None:
        self.identity = identity
        self.config = config or ClientConfig()
        self._relay = relay if relay is not None else get_event_relay()

        # Connection state
        self._ws: KayChatWsClient | None = None
        self._session: ChatSession | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._retry_attempts = 0
        self._shutdown_requested = False
        self._stopped = asyncio.Event()
        self._history: tuple[MessageRecord, ...] = ()

        # Callbacks
        self._update_callback: Callable[[SessionSnapshot], None] | None = None
        self._state_callback: Callable[[SessionState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def start(self) -> bool:
        """Open the connection and start a session.

        Returns:
            True if the connection was established, False otherwise
        """
        self._stopped.clear()
        return await self._connect()

    async def close(self) -> None:
        """Gracefully close the client."""
        _LOGGER.info("[%s] Closing client", self._name)
        self._shutdown_requested = True

        if self._reconnect_task:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None

        self._close_session()
        await self._close_transport()
        self._stopped.set()

    async def wait_closed(self) -> None:
        """Wait until the client is closed or has given up reconnecting."""
        await self._stopped.wait()

    @property
    def session(self) -> ChatSession | None:
        """The current session, if one was ever started."""
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.CLOSED
        return self._session.state

    @property
    def retry_attempts(self) -> int:
        return self._retry_attempts

    def snapshot(self) -> SessionSnapshot:
        """Snapshot of the current session, or of the carried-over history."""
        if self._session is not None:
            return self._session.snapshot()
        return SessionSnapshot(state=SessionState.CLOSED, users=(), messages=self._history)

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_update(self, callback: Callable[[SessionSnapshot], None]) -> None:
        """Register callback for session snapshots (kept across reconnects)."""
        self._update_callback = callback
        if self._session is not None:
            self._session.on_update(callback)

    def on_state_changed(self, callback: Callable[[SessionState], None]) -> None:
        """Register callback for session state changes (kept across reconnects)."""
        self._state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Intents
    # -------------------------------------------------------------------------

    def submit(self, text: str) -> bool:
        """Send chat text through the current session.

        Raises:
            SessionStateError: If no session is registering or active
        """
        if self._session is None:
            raise SessionStateError("Client has not been started")
        return self._session.submit(text)

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    @property
    def _name(self) -> str:
        return self.identity.display_name

    async def _connect(self) -> bool:
        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self._name)
            return False

        _LOGGER.info(
            "[%s] Connecting to %s (attempt #%d)",
            self._name,
            self.config.server_url,
            self._retry_attempts + 1,
        )

        ws_client = KayChatWsClient(max_queue=self.config.outbound_queue_size)
        # The session subscribes and queues its register frame before the
        # socket exists; the frame is flushed as soon as it opens.
        self._start_session(ws_client)

        try:
            await ws_client.connect(
                self.config.server_url,
                ping_interval=self.config.ping_interval,
                timeout=self.config.connect_timeout,
            )
        except KayChatTimeout:
            _LOGGER.warning("[%s] Connection timeout - server unreachable", self._name)
        except KayChatConnectionError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self._name, err)
        except KayChatHandshakeError as err:
            _LOGGER.error("[%s] WebSocket handshake failed: %s", self._name, err)
        else:
            if self._shutdown_requested:
                self._close_session()
                await ws_client.close()
                return False
            self._ws = ws_client
            _LOGGER.info("[%s] WebSocket connected, starting listener", self._name)
            self._listen_task = asyncio.create_task(self._listen(ws_client))
            return True

        self._close_session()
        await ws_client.close(flush_timeout=0)
        self._handle_connection_failure()
        return False

    def _start_session(self, ws_client: KayChatWsClient) -> None:
        session = ChatSession(
            self.identity,
            ws_client,
            relay=self._relay,
            avatars=self.config.avatars,
            history=self._history,
        )
        if self._update_callback:
            session.on_update(self._update_callback)
        session.on_state_changed(self._on_session_state)
        self._session = session

    def _on_session_state(self, state: SessionState) -> None:
        # Only a session the server answered counts as a recovered connection.
        if state is SessionState.ACTIVE and self._retry_attempts:
            _LOGGER.info("[%s] Session active, retry counter reset", self._name)
            self._retry_attempts = 0
        if self._state_callback:
            self._state_callback(state)

    def _close_session(self) -> None:
        if self._session is not None:
            self._history = self._session.messages
            self._session.close()

    async def _close_transport(self) -> None:
        if self._ws is not None:
            try:
                await asyncio.wait_for(
                    self._ws.close(), timeout=TRANSPORT_CLOSE_TIMEOUT
                )
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self._name)
            self._ws = None

    def _handle_connection_failure(self) -> None:
        """Schedule reconnection attempt with exponential backoff."""
        if self._shutdown_requested or self._reconnect_task:
            return

        policy = self.config.reconnect
        if not policy.enabled:
            _LOGGER.info("[%s] Reconnect disabled, staying closed", self._name)
            self._stopped.set()
            return
        if self._retry_attempts >= policy.max_attempts:
            _LOGGER.error(
                "[%s] Giving up after %d reconnect attempts",
                self._name,
                self._retry_attempts,
            )
            self._stopped.set()
            return

        delay = policy.delay_for(self._retry_attempts)
        self._retry_attempts += 1

        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)",
            self._name,
            delay,
            self._retry_attempts,
        )

        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))

    async def _reconnect_after_delay(self, delay: float) -> None:
        """Reconnect after delay."""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self._name)
            raise
        # Cleared first so a failed attempt can schedule the next one.
        self._reconnect_task = None
        await self._connect()

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws_client: KayChatWsClient) -> None:
        """Publish inbound frames until the connection drops."""
        message_count = 0
        reconnect_required = False

        try:
            async for msg in ws_client:
                if msg.type == KayChatWsMessageType.TEXT:
                    message_count += 1
                    self._relay.publish(msg.data or "")
                elif msg.type == KayChatWsMessageType.CLOSED:
                    _LOGGER.info("[%s] WebSocket closed by server", self._name)
                    reconnect_required = True
                    break
                elif msg.type == KayChatWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self._name)
                    reconnect_required = True
                    break
        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self._name, message_count
            )
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self._name, err)
            reconnect_required = True

        if reconnect_required and not self._shutdown_requested:
            self._listen_task = None
            self._close_session()
            await self._close_transport()
            self._handle_connection_failure()
