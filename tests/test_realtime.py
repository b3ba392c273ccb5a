"""Tests for RealtimeClient."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from geotask_core import codec
from geotask_core.errors import (
    ConnectionFailedError,
    ConnectionLostError,
    RealtimeError,
    RealtimeServerError,
)
from geotask_core.models import (
    ChatMessage,
    ChatMessageKind,
    ConnectionState,
    MessageType,
    TypingIndicator,
)
from geotask_core.protocol import build_envelope
from geotask_core.realtime import RealtimeClient
from geotask_core.ws_client import WsMessage, WsMessageType

URL = "wss://rt.test/ws"


class FakeWsClient:
    """In-memory stand-in for GeoTaskWsClient."""

    def __init__(self, connect_error: RealtimeError | None = None) -> None:
        self.connect_error = connect_error
        self.token: str | None = None
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[WsMessage] = asyncio.Queue()

    async def connect(self, url: str, *, token: str, timeout: float = 15.0) -> None:
        self.token = token
        if self.connect_error is not None:
            raise self.connect_error

    async def close(self) -> None:
        self.closed = True

    async def send_text(self, text: str) -> None:
        if self.closed:
            raise ConnectionFailedError("closed")
        self.sent.append(json.loads(text))

    def feed(self, text: str) -> None:
        self._inbox.put_nowait(WsMessage(WsMessageType.TEXT, text))

    def drop(self) -> None:
        self._inbox.put_nowait(WsMessage(WsMessageType.CLOSED))

    def sent_types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def __aiter__(self) -> Any:
        return self._iter()

    async def _iter(self) -> Any:
        while True:
            msg = await self._inbox.get()
            yield msg
            if msg.type is not WsMessageType.TEXT:
                return


class SlowHandshakeWs(FakeWsClient):
    """Fake whose sends yield to the loop before completing."""

    async def send_text(self, text: str) -> None:
        await asyncio.sleep(0.01)
        await super().send_text(text)


class FakeFactory:
    """Hands out prepared fakes, then healthy ones."""

    def __init__(self, *prepared: FakeWsClient) -> None:
        self.prepared = list(prepared)
        self.created: list[FakeWsClient] = []

    def __call__(self) -> FakeWsClient:
        ws = self.prepared.pop(0) if self.prepared else FakeWsClient()
        self.created.append(ws)
        return ws


async def wait_for(predicate: Any, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def make_client(factory: FakeFactory, **kwargs: Any) -> RealtimeClient:
    options: dict[str, Any] = {
        "reconnect_delay": 0.01,
        "reconnect_max_delay": 0.05,
        "heartbeat_interval": 60,
    }
    options.update(kwargs)
    return RealtimeClient(ws_factory=factory, **options)


def chat(text: str = "hello", sender: str = "u2") -> ChatMessage:
    return ChatMessage(text=text, sender=sender, sender_name="Bob", room="r1")


def envelope_text(msg_type: MessageType, data: Any = None, **kwargs: Any) -> str:
    return codec.encode_to_string(build_envelope(msg_type, data, **kwargs))


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
async def connected(factory: FakeFactory) -> Any:
    client = make_client(factory)
    assert await client.connect(URL, "tok")
    yield client, factory.created[0]
    await client.disconnect()


class TestConnect:
    """Tests for connect/disconnect."""

    async def test_connect(self, factory: FakeFactory) -> None:
        client = make_client(factory)
        states: list[ConnectionState] = []
        client.add_connection_observer(states.append)

        assert await client.connect(URL, "tok")

        ws = factory.created[0]
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert ws.token == "tok"
        assert ws.sent_types() == ["connect"]
        assert client.is_connected
        assert client.reconnect_attempts == 0
        await client.disconnect()

    async def test_disconnect(self, connected: Any) -> None:
        client, ws = connected

        await client.disconnect()

        assert ws.sent_types() == ["connect", "disconnect"]
        assert ws.closed
        assert client.connection_state is ConnectionState.DISCONNECTED

    async def test_failed_connect_reconnects(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError("refused")))
        client = make_client(factory)
        states: list[ConnectionState] = []
        errors: list[RealtimeError] = []
        client.add_connection_observer(states.append)
        client.add_error_observer(errors.append)

        assert not await client.connect(URL, "tok")
        assert client.connection_state is ConnectionState.RECONNECTING
        assert isinstance(client.failure_reason, ConnectionFailedError)
        assert client.reconnect_attempts == 1

        await wait_for(lambda: client.is_connected)

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.FAILED,
            ConnectionState.RECONNECTING,
            ConnectionState.CONNECTED,
        ]
        assert len(errors) == 1
        assert client.reconnect_attempts == 0
        assert client.failure_reason is None
        await client.disconnect()

    async def test_gives_up_after_max_attempts(self) -> None:
        factory = FakeFactory(*(FakeWsClient(ConnectionFailedError()) for _ in range(10)))
        client = make_client(factory, max_reconnect_attempts=2)

        await client.connect(URL, "tok")
        await wait_for(lambda: len(factory.created) == 3)
        await wait_for(lambda: client.connection_state is ConnectionState.FAILED)
        await asyncio.sleep(0.1)

        assert len(factory.created) == 3
        assert client.connection_state is ConnectionState.FAILED
        assert client.reconnect_attempts == 2

    async def test_reconnect_uses_fresh_token(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, token_provider=lambda: "fresh")

        await client.connect(URL, "stale")
        await wait_for(lambda: client.is_connected)

        assert factory.created[1].token == "fresh"
        await client.disconnect()

    async def test_disconnect_stops_pending_reconnect(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, reconnect_delay=0.05)

        await client.connect(URL, "tok")
        await client.disconnect()
        await asyncio.sleep(0.1)

        assert len(factory.created) == 1
        assert client.connection_state is ConnectionState.DISCONNECTED


class TestInbound:
    """Tests for inbound frame dispatch."""

    async def test_chat_message(self, connected: Any) -> None:
        client, ws = connected
        received: list[ChatMessage] = []
        client.add_message_observer(received.append)
        message = chat()

        ws.feed(envelope_text(MessageType.MESSAGE, message, sender="u2", room="r1"))
        await wait_for(lambda: received)

        assert received == [message]
        assert client.last_message == message

    async def test_heartbeats_are_silent(self, connected: Any) -> None:
        client, ws = connected
        events: list[Any] = []
        client.add_message_observer(events.append)
        client.add_typing_observer(events.append)
        client.add_error_observer(events.append)

        ws.feed("pong")
        ws.feed(envelope_text(MessageType.HEARTBEAT, "pong"))
        ws.feed(envelope_text(MessageType.MESSAGE, chat()))
        await wait_for(lambda: client.last_message is not None)

        assert len(events) == 1
        assert client.is_connected

    async def test_typing_indicator_expires(self, factory: FakeFactory) -> None:
        client = make_client(factory, typing_ttl=0.05)
        await client.connect(URL, "tok")
        ws = factory.created[0]
        snapshots: list[list[TypingIndicator]] = []
        client.add_typing_observer(snapshots.append)

        ws.feed(envelope_text(MessageType.TYPING, {"user_id": "u2", "user_name": "Bob", "room": "r1", "is_typing": True}))
        await wait_for(lambda: client.typing_users)
        assert [t.user_id for t in client.typing_users] == ["u2"]

        await wait_for(lambda: not client.typing_users)
        assert snapshots[-1] == []
        await client.disconnect()

    async def test_typing_indicator_replaced_per_user(self, connected: Any) -> None:
        client, ws = connected

        ws.feed(envelope_text(MessageType.TYPING, chat(sender="u2")))
        ws.feed(envelope_text(MessageType.TYPING, chat(sender="u2")))
        ws.feed(envelope_text(MessageType.TYPING, chat(sender="u3")))
        await wait_for(lambda: len(client.typing_users) == 2)

        ws.feed(envelope_text(MessageType.TYPING, {"user_id": "u2", "is_typing": False}, room="r1"))
        await wait_for(lambda: len(client.typing_users) == 1)
        assert client.typing_users[0].user_id == "u3"

    async def test_error_envelope(self, connected: Any) -> None:
        client, ws = connected
        errors: list[RealtimeError] = []
        client.add_error_observer(errors.append)

        ws.feed(envelope_text(MessageType.ERROR, {"message": "room closed"}))
        await wait_for(lambda: errors)

        assert isinstance(errors[0], RealtimeServerError)
        assert errors[0].message == "room closed"
        assert client.is_connected

    @pytest.mark.parametrize(
        "frame",
        ["{not json", "[1, 2]", '{"type": "bogus"}', '{"type": "message", "data": 5}'],
    )
    async def test_invalid_frames_ignored(self, connected: Any, frame: str) -> None:
        client, ws = connected

        ws.feed(frame)
        ws.feed(envelope_text(MessageType.MESSAGE, chat()))
        await wait_for(lambda: client.last_message is not None)

        assert client.is_connected


class TestConnectionLoss:
    """Tests for transport loss, heartbeat and queueing."""

    async def test_lost_connection_reconnects(self, connected: Any) -> None:
        client, ws = connected
        states: list[ConnectionState] = []
        client.add_connection_observer(states.append)

        ws.drop()
        await wait_for(lambda: client.is_connected and states)

        assert states == [
            ConnectionState.FAILED,
            ConnectionState.RECONNECTING,
            ConnectionState.CONNECTED,
        ]
        assert ws.closed

    async def test_messages_queued_while_reconnecting(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, reconnect_delay=0.05)
        await client.connect(URL, "tok")
        assert client.connection_state is ConnectionState.RECONNECTING

        assert not await client.send_text_message("queued", room="r1", sender="u1", sender_name="Ann")
        assert client.queued_message_count == 1

        await wait_for(lambda: client.is_connected)
        ws = factory.created[1]
        await wait_for(lambda: client.queued_message_count == 0)
        assert ws.sent_types() == ["connect", "message"]
        assert ws.sent[1]["data"]["text"] == "queued"
        await client.disconnect()

    async def test_queue_is_bounded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("geotask_core.realtime.MAX_QUEUED_MESSAGES", 2)
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, reconnect_delay=0.05)
        await client.connect(URL, "tok")

        for text in ("a", "b", "c"):
            await client.send_text_message(text, room="r1", sender="u1", sender_name="Ann")
        assert client.queued_message_count == 2

        await wait_for(lambda: client.is_connected and client.queued_message_count == 0)
        ws = factory.created[1]
        assert [frame["data"]["text"] for frame in ws.sent[1:]] == ["b", "c"]
        await client.disconnect()

    async def test_disconnect_discards_queued_messages(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, reconnect_delay=0.05)
        await client.connect(URL, "tok")
        await client.send_text_message("stale", room="r1", sender="u1", sender_name="Ann")

        await client.disconnect()
        assert client.queued_message_count == 0

        assert await client.connect("wss://other.test/ws", "other-token")
        assert factory.created[-1].sent_types() == ["connect"]
        await client.disconnect()

    async def test_connect_with_new_token_discards_queued_messages(self) -> None:
        factory = FakeFactory(FakeWsClient(ConnectionFailedError()))
        client = make_client(factory, reconnect_delay=5)
        await client.connect(URL, "tok")
        await client.send_text_message("stale", room="r1", sender="u1", sender_name="Ann")

        assert await client.connect(URL, "other-token")

        assert client.queued_message_count == 0
        assert factory.created[-1].sent_types() == ["connect"]
        await client.disconnect()

    async def test_giving_up_discards_queued_messages(self) -> None:
        factory = FakeFactory(
            FakeWsClient(ConnectionFailedError()), FakeWsClient(ConnectionFailedError())
        )
        client = make_client(factory, reconnect_delay=0.05, max_reconnect_attempts=1)
        await client.connect(URL, "tok")
        await client.send_text_message("stale", room="r1", sender="u1", sender_name="Ann")

        await wait_for(lambda: len(factory.created) == 2)
        await wait_for(lambda: client.connection_state is ConnectionState.FAILED)
        assert client.queued_message_count == 0

        assert await client.connect(URL, "tok")
        assert factory.created[-1].sent_types() == ["connect"]
        await client.disconnect()

    async def test_peer_close_during_handshake_reconnects_once(self) -> None:
        ws = SlowHandshakeWs()
        ws.drop()
        factory = FakeFactory(ws)
        client = make_client(factory)

        assert await client.connect(URL, "tok")
        await wait_for(lambda: len(factory.created) == 2 and client.is_connected)
        await asyncio.sleep(0.05)

        assert len(factory.created) == 2
        assert client.reconnect_attempts == 0
        await client.disconnect()

    async def test_disconnect_during_handshake(self) -> None:
        factory = FakeFactory(SlowHandshakeWs())
        client = make_client(factory)

        pending = asyncio.create_task(client.connect(URL, "tok"))
        await asyncio.sleep(0.001)
        await client.disconnect()

        assert not await pending
        await asyncio.sleep(0.05)
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert len(factory.created) == 1

    async def test_missed_heartbeats_drop_connection(self, factory: FakeFactory) -> None:
        client = make_client(
            factory,
            heartbeat_interval=0.01,
            heartbeat_timeout=0.01,
            max_reconnect_attempts=0,
        )
        await client.connect(URL, "tok")
        ws = factory.created[0]

        await wait_for(lambda: client.connection_state is ConnectionState.FAILED)

        assert "heartbeat" in ws.sent_types()
        heartbeat = next(frame for frame in ws.sent if frame["type"] == "heartbeat")
        assert heartbeat["data"] == "ping"
        assert isinstance(client.failure_reason, ConnectionLostError)


class TestOutbound:
    """Tests for outbound messages."""

    async def test_send_requires_connection(self, factory: FakeFactory) -> None:
        client = make_client(factory)
        with pytest.raises(ConnectionFailedError):
            await client.send_chat_message(chat())
        with pytest.raises(ConnectionFailedError):
            await client.join_room("r1")

    async def test_room_and_message_envelopes(self, connected: Any) -> None:
        client, ws = connected

        await client.join_room("r1")
        assert await client.send_system_message("welcome", room="r1")
        await client.send_typing_indicator(
            TypingIndicator(user_id="u1", user_name="Ann", room="r1", is_typing=True)
        )
        await client.leave_room("r1")

        assert ws.sent_types() == ["connect", "join", "message", "typing", "leave"]
        join = ws.sent[1]
        assert join["data"] == "r1" and join["room"] == "r1"
        system = ws.sent[2]["data"]
        assert system["sender"] == "system"
        assert system["message_type"] == ChatMessageKind.SYSTEM.value

    async def test_analytics(self, connected: Any) -> None:
        client, _ = connected
        analytics = client.get_connection_analytics()
        assert analytics["is_connected"] is True
        assert analytics["connection_state"] == "connected"
        assert analytics["reconnect_attempts"] == 0
