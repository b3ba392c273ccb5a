"""GeoTask client core: HTTP API, session lifecycle and realtime chat."""

from .api import GeoTaskApiService
from .config import ClientConfig, ConfigLoadError, load_config
from .errors import (
    APIError,
    GeoTaskClientError,
    RealtimeError,
)
from .factory import GeoTaskClient, build_client
from .http import GeoTaskHttpClient
from .interceptors import InterceptorChain, default_chain
from .models import (
    ChatMessage,
    ConnectionState,
    Session,
    SessionState,
    Token,
    TypingIndicator,
    User,
)
from .realtime import RealtimeClient
from .session import BiometricGate, SessionManager
from .storage import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "BiometricGate",
    "ChatMessage",
    "ClientConfig",
    "ConfigLoadError",
    "ConnectionState",
    "GeoTaskApiService",
    "GeoTaskClient",
    "GeoTaskClientError",
    "GeoTaskHttpClient",
    "InterceptorChain",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RealtimeClient",
    "RealtimeError",
    "Session",
    "SessionManager",
    "SessionState",
    "Token",
    "TypingIndicator",
    "User",
    "build_client",
    "default_chain",
    "load_config",
    "__version__",
]
