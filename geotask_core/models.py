"""Data models for the GeoTask session and networking core.

All models are immutable dataclasses with snake_case attributes; the codec
maps them to and from the JSON wire format.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

import jwt

T = TypeVar("T")

REFRESH_THRESHOLD = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


# -----------------------------------------------------------------------------
# Session models
# -----------------------------------------------------------------------------


class SessionState(Enum):
    """Observable projection of the current session."""

    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    EXPIRED = "expired"
    LOADING = "loading"


@dataclass(frozen=True)
class User:
    """Authenticated user profile."""

    id: str
    name: str
    email: str
    phone: str | None = None
    profile_image: str | None = None


@dataclass(frozen=True)
class Token:
    """JWT access/refresh token pair.

    A new Token replaces the old one on every login and refresh.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "Bearer"

    @property
    def is_expired(self) -> bool:
        return _utcnow() >= self.expires_at

    @property
    def is_expiring_soon(self) -> bool:
        return _utcnow() >= self.expires_at - REFRESH_THRESHOLD

    @property
    def expires_in(self) -> float:
        """Seconds until expiry (negative once expired)."""
        return (self.expires_at - _utcnow()).total_seconds()

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"

    @classmethod
    def from_login_response(
        cls,
        response: LoginResponse,
        *,
        default_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
    ) -> Token:
        """Build a token from an auth response.

        Expiry comes from the access token's ``exp`` claim when it is a
        readable JWT, then from ``expires_in``, then from the default lifetime.
        """
        expires_at = token_expiry_from_jwt(response.token)
        if expires_at is None and response.expires_in is not None:
            expires_at = _expiry_after(response.expires_in)
        if expires_at is None:
            expires_at = _utcnow() + default_lifetime
        return cls(
            access_token=response.token,
            refresh_token=response.refresh_token,
            expires_at=expires_at,
        )


def token_expiry_from_jwt(access_token: str) -> datetime | None:
    """Return the ``exp`` claim of an access token, or None if unavailable.

    The signature is not verified: the client only needs the expiry to
    schedule refreshes, the server remains the authority on validity.
    """
    try:
        claims = jwt.decode(
            access_token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _expiry_after(seconds: float) -> datetime | None:
    """Expiry ``seconds`` from now, or None for non-finite or out-of-range values."""
    try:
        return _utcnow() + timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        return None


@dataclass(frozen=True)
class Session:
    """Authenticated user plus token, persisted across runs."""

    user: User
    token: Token
    last_login_at: datetime = field(default_factory=_utcnow)
    device_id: str = ""


# -----------------------------------------------------------------------------
# Request / response envelopes
# -----------------------------------------------------------------------------


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass(frozen=True)
class APIRequest:
    """Logical request relative to the configured base URL."""

    method: HttpMethod
    path: str
    query_params: dict[str, Any] | None = None
    body: bytes | None = None
    headers: dict[str, str] = field(default_factory=lambda: {})


@dataclass(frozen=True)
class HttpRequest:
    """Prepared request passed through request interceptors."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=lambda: {})
    body: bytes | None = None

    def with_header(self, name: str, value: str) -> HttpRequest:
        headers = dict(self.headers)
        headers[name] = value
        return HttpRequest(
            method=self.method, url=self.url, headers=headers, body=self.body
        )


@dataclass(frozen=True)
class HttpResponse:
    """Raw transport result passed through response interceptors."""

    status: int
    headers: dict[str, str]
    body: bytes
    request: HttpRequest


@dataclass(frozen=True)
class APIResponse(Generic[T]):
    """Decoded response returned to callers."""

    data: T
    status_code: int
    headers: dict[str, str]


@dataclass(frozen=True)
class EmptyResponse:
    """Response type for endpoints without a meaningful body."""


@dataclass(frozen=True)
class ErrorResponse:
    message: str
    code: str | None = None
    details: dict[str, str] | None = None


# -----------------------------------------------------------------------------
# Auth payloads
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginRequest:
    email: str
    password: str


@dataclass(frozen=True)
class RegisterRequest:
    email: str
    password: str
    name: str


@dataclass(frozen=True)
class RefreshTokenRequest:
    refresh_token: str


@dataclass(frozen=True)
class LoginResponse:
    token: str
    refresh_token: str
    user: User
    expires_in: float | None = None


# -----------------------------------------------------------------------------
# Domain resources
# -----------------------------------------------------------------------------


class GeoTaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class GeoTaskLocation:
    latitude: float
    longitude: float
    address: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class GeoTask:
    id: str
    title: str
    description: str = ""
    is_completed: bool = False
    priority: GeoTaskPriority = GeoTaskPriority.MEDIUM
    due_date: datetime | None = None
    location: GeoTaskLocation | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class CreateTaskRequest:
    title: str
    description: str
    location: str
    priority: str


@dataclass(frozen=True)
class Order:
    id: str
    title: str
    description: str
    status: str
    customer_id: str
    location: str
    created_at: datetime
    updated_at: datetime
    contractor_id: str | None = None
    price: float | None = None


@dataclass(frozen=True)
class CreateOrderRequest:
    title: str
    description: str
    location: str
    price: float | None = None


@dataclass(frozen=True)
class Contractor:
    id: str
    name: str
    email: str
    specialization: str
    rating: float
    completed_orders: int
    is_available: bool
    created_at: datetime
    updated_at: datetime
    phone: str | None = None
    profile_image: str | None = None


@dataclass(frozen=True)
class ContractorRequest:
    id: str
    contractor_id: str
    order_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    message: str | None = None


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    type: str
    created_at: datetime
    updated_at: datetime


# -----------------------------------------------------------------------------
# Realtime models
# -----------------------------------------------------------------------------


class MessageType(Enum):
    """Realtime envelope types."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    MESSAGE = "message"
    TYPING = "typing"
    READ = "read"
    JOIN = "join"
    LEAVE = "leave"
    HEARTBEAT = "heartbeat"
    ERROR = "error"
    ACK = "ack"


class ChatMessageKind(Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    LOCATION = "location"
    SYSTEM = "system"


@dataclass(frozen=True)
class ChatMessage:
    text: str
    sender: str
    sender_name: str
    room: str
    id: str = field(default_factory=_new_id)
    sender_avatar: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    is_read: bool = False
    message_type: ChatMessageKind = ChatMessageKind.TEXT


@dataclass(frozen=True)
class TypingIndicator:
    user_id: str
    user_name: str
    room: str
    is_typing: bool
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class RealtimeMessage:
    """Typed envelope carried over the realtime connection.

    ``data`` stays a plain JSON value; dispatch decodes it according to
    ``type``.
    """

    type: MessageType
    data: Any = None
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_utcnow)
    sender: str | None = None
    room: str | None = None


class ConnectionState(Enum):
    """Realtime connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
