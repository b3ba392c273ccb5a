"""Realtime messaging client for GeoTask chat.

Handles:
- WebSocket connection with bearer authentication
- Connect/disconnect control envelopes
- Application heartbeats and dead-connection detection
- Automatic reconnection with capped exponential backoff
- Chat message, typing indicator and server error dispatch
- Queueing of chat messages while reconnecting

Usage:
    client = RealtimeClient()
    client.add_message_observer(on_message)
    await client.connect("wss://chat.geotask.com/ws", token)
    await client.send_text_message("hi", room="r1", sender="u1", sender_name="Ann")
    await client.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .errors import (
    ConnectionFailedError,
    ConnectionLostError,
    InvalidMessageError,
    RealtimeError,
    RealtimeNetworkError,
    RealtimeServerError,
)
from .events import Observable, Signal, Unsubscribe
from .models import (
    ChatMessage,
    ChatMessageKind,
    ConnectionState,
    MessageType,
    RealtimeMessage,
    TypingIndicator,
)
from .protocol import (
    HEARTBEAT_PING,
    build_envelope,
    chat_message_from,
    decode_envelope,
    encode_envelope,
    error_text_from,
    is_heartbeat_frame,
    typing_indicator_from,
)
from .ws_client import GeoTaskWsClient, WsMessageType

_LOGGER = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_HEARTBEAT_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 2.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_TYPING_TTL = 3.0
DEFAULT_CONNECT_TIMEOUT = 15.0
MAX_MISSED_HEARTBEATS = 3
MAX_QUEUED_MESSAGES = 100
DISCONNECT_SEND_TIMEOUT = 1.0

SYSTEM_SENDER = "system"
SYSTEM_SENDER_NAME = "System"


class RealtimeClient:
    """Persistent chat connection with heartbeat and reconnection.

    State machine:
        disconnected/failed --connect--> connecting --ok--> connected
        connecting/connected --transport error--> failed
        failed --attempts left--> reconnecting --ok--> connected
        *      --disconnect--> disconnected
    """

    def __init__(
        self,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        typing_ttl: float = DEFAULT_TYPING_TTL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        token_provider: Callable[[], str | None] | None = None,
        ws_factory: Callable[[], GeoTaskWsClient] = GeoTaskWsClient,
    ) -> None:
        """Initialize the client.

        Args:
            heartbeat_interval: Seconds between heartbeat pings.
            heartbeat_timeout: Grace period for the pong after each ping.
            reconnect_delay: Delay before the first reconnect attempt.
            reconnect_max_delay: Upper bound of the backoff delay.
            max_reconnect_attempts: Consecutive attempts before giving up.
            typing_ttl: Seconds a typing indicator stays without refresh.
            connect_timeout: Timeout of the WebSocket handshake.
            token_provider: Supplies a fresh token for reconnect attempts.
            ws_factory: Builds the underlying WebSocket wrapper.
        """
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._reconnect_delay = reconnect_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._typing_ttl = typing_ttl
        self._connect_timeout = connect_timeout
        self._token_provider = token_provider
        self._ws_factory = ws_factory

        self._url = ""
        self._token = ""
        self._ws: GeoTaskWsClient | None = None
        self._state: Observable[ConnectionState] = Observable(
            "connection_state", ConnectionState.DISCONNECTED
        )
        self._failure_reason: RealtimeError | None = None
        self._reconnect_attempts = 0
        self._last_pong = 0.0

        self._last_message: ChatMessage | None = None
        self._typing: dict[str, TypingIndicator] = {}
        self._typing_timers: dict[str, asyncio.TimerHandle] = {}
        self._message_queue: list[RealtimeMessage] = []

        self._message_signal: Signal[ChatMessage] = Signal("chat_message")
        self._typing_signal: Signal[list[TypingIndicator]] = Signal("typing_users")
        self._error_signal: Signal[RealtimeError] = Signal("realtime_error")

        self._receive_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._state.value

    @property
    def failure_reason(self) -> RealtimeError | None:
        """Error behind the last FAILED transition."""
        return self._failure_reason

    @property
    def is_connected(self) -> bool:
        return self._state.value is ConnectionState.CONNECTED

    @property
    def last_message(self) -> ChatMessage | None:
        return self._last_message

    @property
    def typing_users(self) -> list[TypingIndicator]:
        return list(self._typing.values())

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def queued_message_count(self) -> int:
        return len(self._message_queue)

    # -------------------------------------------------------------------------
    # Public API: Observers
    # -------------------------------------------------------------------------

    def add_connection_observer(
        self, callback: Callable[[ConnectionState], None], *, emit_current: bool = False
    ) -> Unsubscribe:
        return self._state.subscribe(callback, emit_current=emit_current)

    def add_message_observer(self, callback: Callable[[ChatMessage], None]) -> Unsubscribe:
        return self._message_signal.subscribe(callback)

    def add_typing_observer(
        self, callback: Callable[[list[TypingIndicator]], None]
    ) -> Unsubscribe:
        return self._typing_signal.subscribe(callback)

    def add_error_observer(self, callback: Callable[[RealtimeError], None]) -> Unsubscribe:
        return self._error_signal.subscribe(callback)

    # -------------------------------------------------------------------------
    # Public API: Connection
    # -------------------------------------------------------------------------

    async def connect(self, url: str, token: str) -> bool:
        """Connect to the realtime server.

        Returns:
            True once connected. On failure the client is FAILED (or already
            RECONNECTING) and ``failure_reason`` holds the error.
        """
        if self._state.value is ConnectionState.CONNECTED:
            if url == self._url:
                return True
            await self.disconnect()

        self._cancel_reconnect()
        if url != self._url or token != self._token:
            self._discard_queue()
        self._url = url
        self._token = token
        self._reconnect_attempts = 0
        return await self._connect_once(reconnecting=False)

    async def disconnect(self) -> None:
        """Close the connection and stop every timer.

        The disconnect envelope is sent best-effort and never delays teardown
        for more than a second.
        """
        self._cancel_reconnect()

        ws = self._ws
        if ws is not None and self._state.value is ConnectionState.CONNECTED:
            try:
                await asyncio.wait_for(
                    ws.send_text(encode_envelope(build_envelope(MessageType.DISCONNECT))),
                    timeout=DISCONNECT_SEND_TIMEOUT,
                )
            except (RealtimeError, TimeoutError) as err:
                _LOGGER.debug("Disconnect envelope not sent: %s", err)

        await self._teardown()
        self._clear_typing()
        self._reconnect_attempts = 0
        self._discard_queue()
        self._failure_reason = None
        self._set_state(ConnectionState.DISCONNECTED)
        _LOGGER.info("Realtime client disconnected")

    # -------------------------------------------------------------------------
    # Public API: Outbound messages
    # -------------------------------------------------------------------------

    async def send_chat_message(self, message: ChatMessage) -> bool:
        """Send a chat message.

        Returns:
            True if sent now, False if queued until the reconnect succeeds.

        Raises:
            ConnectionFailedError: Not connected and not reconnecting.
            MessageSendFailedError: The transport rejected the frame.
        """
        envelope = build_envelope(
            MessageType.MESSAGE, message, sender=message.sender, room=message.room
        )
        if self._state.value is ConnectionState.RECONNECTING:
            if len(self._message_queue) >= MAX_QUEUED_MESSAGES:
                dropped = self._message_queue.pop(0)
                _LOGGER.warning("Message queue full, dropped %s", dropped.id)
            self._message_queue.append(envelope)
            _LOGGER.debug("Queued message %s while reconnecting", message.id)
            return False
        await self._send(envelope)
        return True

    async def send_text_message(
        self, text: str, *, room: str, sender: str, sender_name: str
    ) -> bool:
        return await self.send_chat_message(
            ChatMessage(text=text, sender=sender, sender_name=sender_name, room=room)
        )

    async def send_system_message(self, text: str, *, room: str) -> bool:
        return await self.send_chat_message(
            ChatMessage(
                text=text,
                sender=SYSTEM_SENDER,
                sender_name=SYSTEM_SENDER_NAME,
                room=room,
                message_type=ChatMessageKind.SYSTEM,
            )
        )

    async def send_typing_indicator(self, indicator: TypingIndicator) -> None:
        await self._send(
            build_envelope(
                MessageType.TYPING, indicator, sender=indicator.user_id, room=indicator.room
            )
        )

    async def join_room(self, room: str) -> None:
        await self._send(build_envelope(MessageType.JOIN, room, room=room))

    async def create_chat_room(self, room: str) -> None:
        await self.join_room(room)

    async def leave_room(self, room: str) -> None:
        await self._send(build_envelope(MessageType.LEAVE, room, room=room))

    async def flush_message_queue(self) -> int:
        """Send queued chat messages in order.

        Returns:
            Number of messages sent. Unsent messages stay queued.
        """
        sent = 0
        while self._message_queue and self.is_connected:
            envelope = self._message_queue[0]
            try:
                await self._send(envelope)
            except RealtimeError as err:
                _LOGGER.warning("Flushing queued messages stopped: %s", err)
                break
            self._message_queue.pop(0)
            sent += 1
        if sent:
            _LOGGER.debug("Flushed %d queued message(s)", sent)
        return sent

    def get_connection_analytics(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "connection_state": self._state.value.value,
            "failure_reason": str(self._failure_reason) if self._failure_reason else None,
            "reconnect_attempts": self._reconnect_attempts,
            "typing_users_count": len(self._typing),
            "queued_messages": len(self._message_queue),
            "last_message_timestamp": (
                self._last_message.timestamp.timestamp() if self._last_message else 0.0
            ),
        }

    # -------------------------------------------------------------------------
    # Internal: Connection lifecycle
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._state.value
        if self._state.set(state):
            _LOGGER.debug("Realtime state: %s → %s", previous.value, state.value)

    async def _connect_once(self, *, reconnecting: bool) -> bool:
        if not reconnecting:
            self._set_state(ConnectionState.CONNECTING)
        if reconnecting and self._token_provider is not None:
            self._token = self._token_provider() or self._token

        ws = self._ws_factory()
        attached = False
        try:
            await ws.connect(self._url, token=self._token, timeout=self._connect_timeout)
            self._ws = ws
            attached = True
            await ws.send_text(encode_envelope(build_envelope(MessageType.CONNECT)))
        except RealtimeError as err:
            if attached and self._ws is not ws:
                _LOGGER.debug("Connection to %s torn down during handshake", self._url)
                return False
            _LOGGER.warning("Realtime connection to %s failed: %s", self._url, err)
            if self._ws is None:
                await ws.close()
            await self._teardown()
            self._handle_failure(err)
            return False

        if self._ws is not ws:
            _LOGGER.debug("Connection to %s torn down during handshake", self._url)
            return False

        # Loops start only once the handshake is complete
        loop = asyncio.get_running_loop()
        self._last_pong = loop.time()
        self._receive_task = loop.create_task(self._receive_loop(ws))
        self._heartbeat_task = loop.create_task(self._heartbeat_loop(ws))

        self._reconnect_attempts = 0
        self._failure_reason = None
        self._set_state(ConnectionState.CONNECTED)
        _LOGGER.info("Realtime client connected to %s", self._url)
        await self.flush_message_queue()
        return True

    def _handle_failure(self, error: RealtimeError) -> None:
        """Enter FAILED and schedule a reconnect while attempts remain."""
        self._failure_reason = error
        self._set_state(ConnectionState.FAILED)
        self._error_signal.emit(error)

        if self._reconnect_attempts >= self._max_reconnect_attempts:
            _LOGGER.warning(
                "Giving up after %d reconnect attempt(s)", self._reconnect_attempts
            )
            self._discard_queue()
            return

        delay = min(
            self._reconnect_delay * (2**self._reconnect_attempts),
            self._reconnect_max_delay,
        )
        self._reconnect_attempts += 1
        _LOGGER.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts,
            self._max_reconnect_attempts,
        )
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay(delay)
        )

    async def _reconnect_after_delay(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self._connect_once(reconnecting=True)
        except asyncio.CancelledError:
            _LOGGER.debug("Reconnect cancelled")
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _discard_queue(self) -> None:
        if self._message_queue:
            _LOGGER.info("Discarding %d unsent message(s)", len(self._message_queue))
            self._message_queue.clear()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._receive_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._heartbeat_task = None
        self._receive_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def _on_connection_lost(self, ws: GeoTaskWsClient, error: RealtimeError) -> None:
        if ws is not self._ws:
            return
        _LOGGER.warning("Realtime connection lost: %s", error)
        await self._teardown()
        self._handle_failure(error)

    # -------------------------------------------------------------------------
    # Internal: Receive loop and heartbeat
    # -------------------------------------------------------------------------

    async def _receive_loop(self, ws: GeoTaskWsClient) -> None:
        error: RealtimeError = ConnectionLostError()
        async for msg in ws:
            if msg.type is WsMessageType.TEXT:
                if msg.data is not None:
                    self._handle_frame(msg.data)
                continue
            if msg.type is WsMessageType.ERROR and msg.error is not None:
                error = RealtimeNetworkError(msg.error)
            else:
                error = ConnectionLostError(
                    f"WebSocket closed: {msg.error}" if msg.error else None
                )
            break
        await self._on_connection_lost(ws, error)

    async def _heartbeat_loop(self, ws: GeoTaskWsClient) -> None:
        loop = asyncio.get_running_loop()
        window = self._heartbeat_interval + self._heartbeat_timeout
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            missed = int((loop.time() - self._last_pong) // window)
            if missed >= MAX_MISSED_HEARTBEATS:
                await self._on_connection_lost(
                    ws, ConnectionLostError(f"No heartbeat response for {missed} windows")
                )
                return
            try:
                await ws.send_text(
                    encode_envelope(build_envelope(MessageType.HEARTBEAT, HEARTBEAT_PING))
                )
            except RealtimeError as err:
                await self._on_connection_lost(ws, err)
                return

    def _handle_frame(self, text: str) -> None:
        self._last_pong = asyncio.get_running_loop().time()
        if is_heartbeat_frame(text):
            return

        try:
            envelope = decode_envelope(text)
            self._dispatch(envelope)
        except InvalidMessageError as err:
            _LOGGER.warning("Ignoring invalid realtime frame: %s", err)

    def _dispatch(self, envelope: RealtimeMessage) -> None:
        if envelope.type is MessageType.HEARTBEAT:
            return

        if envelope.type is MessageType.MESSAGE:
            message = chat_message_from(envelope)
            self._last_message = message
            self._message_signal.emit(message)
            return

        if envelope.type is MessageType.TYPING:
            self._update_typing(typing_indicator_from(envelope))
            return

        if envelope.type is MessageType.ERROR:
            self._error_signal.emit(RealtimeServerError(error_text_from(envelope)))
            return

        _LOGGER.debug("Unhandled realtime envelope: %s", envelope.type.value)

    # -------------------------------------------------------------------------
    # Internal: Typing indicators
    # -------------------------------------------------------------------------

    def _update_typing(self, indicator: TypingIndicator) -> None:
        user_id = indicator.user_id
        handle = self._typing_timers.pop(user_id, None)
        if handle is not None:
            handle.cancel()
        self._typing.pop(user_id, None)

        if indicator.is_typing:
            self._typing[user_id] = indicator
            self._typing_timers[user_id] = asyncio.get_running_loop().call_later(
                self._typing_ttl, self._expire_typing, user_id
            )
        self._typing_signal.emit(self.typing_users)

    def _expire_typing(self, user_id: str) -> None:
        self._typing_timers.pop(user_id, None)
        if self._typing.pop(user_id, None) is not None:
            self._typing_signal.emit(self.typing_users)

    def _clear_typing(self) -> None:
        for handle in self._typing_timers.values():
            handle.cancel()
        self._typing_timers.clear()
        if self._typing:
            self._typing.clear()
            self._typing_signal.emit([])

    async def _send(self, envelope: RealtimeMessage) -> None:
        ws = self._ws
        if ws is None or self._state.value is not ConnectionState.CONNECTED:
            raise ConnectionFailedError(
                f"Cannot send {envelope.type.value}: not connected "
                f"({self._state.value.value})"
            )
        await ws.send_text(encode_envelope(envelope))
