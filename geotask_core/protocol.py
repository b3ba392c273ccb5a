"""Envelope helpers for the GeoTask realtime protocol.

Frames are JSON text objects of the form::

    {"id": ..., "type": "message", "data": {...}, "timestamp": ...,
     "sender": ..., "room": ...}

The bare text frames ``"ping"`` and ``"pong"`` are accepted as heartbeats
alongside structured ``heartbeat`` envelopes.
"""

from __future__ import annotations

import json
from typing import Any

from . import codec
from .errors import DecodingError, EncodingError, InvalidMessageError
from .models import ChatMessage, MessageType, RealtimeMessage, TypingIndicator

HEARTBEAT_PING = "ping"
HEARTBEAT_PONG = "pong"


def build_envelope(
    msg_type: MessageType,
    data: Any = None,
    *,
    sender: str | None = None,
    room: str | None = None,
) -> RealtimeMessage:
    """Build an outbound envelope.

    Args:
        msg_type: Envelope type.
        data: Payload; dataclasses are encoded with the model codec.
        sender: Optional sender id.
        room: Optional room id.
    """
    return RealtimeMessage(type=msg_type, data=data, sender=sender, room=room)


def encode_envelope(message: RealtimeMessage) -> str:
    """Serialize an envelope to a JSON text frame.

    Raises:
        InvalidMessageError: The payload cannot be represented as JSON.
    """
    try:
        return codec.encode_to_string(message)
    except EncodingError as err:
        raise InvalidMessageError(f"Cannot encode {message.type.value} envelope: {err}") from err


def is_heartbeat_frame(text: str) -> bool:
    """Return True for the bare ``ping``/``pong`` sentinels."""
    return text.strip() in (HEARTBEAT_PING, HEARTBEAT_PONG)


def decode_envelope(text: str) -> RealtimeMessage:
    """Parse a JSON text frame into an envelope.

    Raises:
        InvalidMessageError: Not JSON, not an object, or an unknown type.
    """
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as err:
        raise InvalidMessageError(f"Frame is not JSON: {err}") from err
    if not isinstance(parsed, dict):
        raise InvalidMessageError("Frame is not a JSON object")
    try:
        return codec.decode_from_dict(parsed, RealtimeMessage)
    except DecodingError as err:
        raise InvalidMessageError(f"Malformed envelope: {err}") from err


def chat_message_from(envelope: RealtimeMessage) -> ChatMessage:
    """Decode the payload of a ``message`` envelope.

    Missing ``sender``/``room`` fields fall back to the envelope's own.
    """
    data = envelope.data
    if not isinstance(data, dict):
        raise InvalidMessageError("Message envelope carries no chat payload")
    payload = dict(data)
    if envelope.sender is not None:
        payload.setdefault("sender", envelope.sender)
    if envelope.room is not None:
        payload.setdefault("room", envelope.room)
    try:
        return codec.decode_from_dict(payload, ChatMessage)
    except DecodingError as err:
        raise InvalidMessageError(f"Malformed chat message: {err}") from err


def typing_indicator_from(envelope: RealtimeMessage) -> TypingIndicator:
    """Decode the payload of a ``typing`` envelope.

    Accepts either a typing indicator payload (``user_id``/``user_name``) or
    a chat message payload (``sender``/``sender_name``), which is treated as
    "this sender is typing".
    """
    data = envelope.data
    if not isinstance(data, dict):
        raise InvalidMessageError("Typing envelope carries no payload")
    normalized = {codec.camel_to_snake(str(key)): value for key, value in data.items()}

    if "user_id" in normalized:
        payload = dict(normalized)
        payload.setdefault("user_name", payload["user_id"])
        if envelope.room is not None:
            payload.setdefault("room", envelope.room)
        payload.setdefault("is_typing", True)
        try:
            return codec.decode_from_dict(payload, TypingIndicator)
        except DecodingError as err:
            raise InvalidMessageError(f"Malformed typing indicator: {err}") from err

    chat = chat_message_from(envelope)
    return TypingIndicator(
        user_id=chat.sender,
        user_name=chat.sender_name,
        room=chat.room,
        is_typing=True,
    )


def error_text_from(envelope: RealtimeMessage) -> str:
    """Extract the human readable text of an ``error`` envelope."""
    data = envelope.data
    if isinstance(data, str) and data:
        return data
    if isinstance(data, dict):
        for key in ("message", "error", "text"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return "Server error"
