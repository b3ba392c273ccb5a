"""Client configuration.

Configuration is plain data: a frozen dataclass with defaults that can be
built in code or loaded from a YAML file such as::

    base_url: https://api.geotask.com
    request_timeout: 20
    rate_limit:
      requests_per_minute: 120
      fail_fast: true
    session:
      refresh_threshold: 300
    realtime:
      url: wss://rt.geotask.com/ws
      max_reconnect_attempts: 5
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_BASE_URL = "https://api.geotask.com"


class ConfigLoadError(Exception):
    """Configuration file is missing or invalid."""


@dataclass(frozen=True)
class ClientConfig:
    """Settings for the HTTP, session and realtime components.

    Attributes:
        base_url: API base URL; request paths are appended to it.
        request_timeout: Total timeout per HTTP request (seconds).
        requests_per_minute: Client-side rate limit.
        rate_limit_fail_fast: Reject requests over the limit instead of
            passing them through.
        max_retries: Attempts made by the retry wrapper.
        retry_initial_delay: First backoff delay (seconds), doubled per attempt.
        cache_max_entries: Size of the GET response cache.
        cache_ttl: Lifetime of cached responses (seconds).
        refresh_threshold: Refresh tokens this long before expiry (seconds).
        default_token_lifetime: Token lifetime when the server gives none.
        session_storage_key: Store key holding the serialized session.
        realtime_url: Realtime endpoint, if any.
        heartbeat_interval: Realtime heartbeat period (seconds).
        heartbeat_timeout: Grace period for a heartbeat response (seconds).
        reconnect_delay: First realtime reconnect delay (seconds).
        reconnect_max_delay: Upper bound for the reconnect delay (seconds).
        max_reconnect_attempts: Consecutive reconnects before giving up.
        typing_ttl: Lifetime of a typing indicator (seconds).
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    requests_per_minute: int = 60
    rate_limit_fail_fast: bool = True
    max_retries: int = 3
    retry_initial_delay: float = 1.0
    cache_max_entries: int = 128
    cache_ttl: float = 300.0
    refresh_threshold: float = 300.0
    default_token_lifetime: float = 3600.0
    session_storage_key: str = "user_session"
    realtime_url: str | None = None
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 10.0
    reconnect_delay: float = 2.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 5
    typing_ttl: float = 3.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigLoadError("base_url is required")
        if self.requests_per_minute <= 0:
            raise ConfigLoadError("requests_per_minute must be positive")
        if self.max_retries < 1:
            raise ConfigLoadError("max_retries must be at least 1")
        if self.max_reconnect_attempts < 0:
            raise ConfigLoadError("max_reconnect_attempts must not be negative")


# Nested YAML sections flattened onto ClientConfig field names
_SECTIONS: dict[str, dict[str, str]] = {
    "rate_limit": {
        "requests_per_minute": "requests_per_minute",
        "fail_fast": "rate_limit_fail_fast",
    },
    "retry": {
        "max_retries": "max_retries",
        "initial_delay": "retry_initial_delay",
    },
    "cache": {
        "max_entries": "cache_max_entries",
        "ttl": "cache_ttl",
    },
    "session": {
        "refresh_threshold": "refresh_threshold",
        "default_token_lifetime": "default_token_lifetime",
        "storage_key": "session_storage_key",
    },
    "realtime": {
        "url": "realtime_url",
        "heartbeat_interval": "heartbeat_interval",
        "heartbeat_timeout": "heartbeat_timeout",
        "reconnect_delay": "reconnect_delay",
        "reconnect_max_delay": "reconnect_max_delay",
        "max_reconnect_attempts": "max_reconnect_attempts",
        "typing_ttl": "typing_ttl",
    },
}


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return parsed content."""
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigLoadError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a mapping at top level of {path}")
    return data


# Accepted YAML value types per annotation
_ACCEPTED_TYPES: dict[str, tuple[type, ...]] = {
    "str": (str,),
    "str | None": (str, type(None)),
    "int": (int,),
    "float": (int, float),
    "bool": (bool,),
}


def _check_type(name: str, annotation: str, value: Any) -> None:
    accepted = _ACCEPTED_TYPES[annotation]
    if isinstance(value, bool) and bool not in accepted:
        accepted = ()
    if not isinstance(value, accepted):
        raise ConfigLoadError(
            f"Option '{name}' expects {annotation}, got {type(value).__name__}"
        )


def config_from_dict(data: dict[str, Any]) -> ClientConfig:
    """Build a ClientConfig from a (possibly nested) mapping."""
    known = {item.name for item in fields(ClientConfig)}
    values: dict[str, Any] = {}

    for key, value in data.items():
        if key in _SECTIONS:
            if not isinstance(value, dict):
                raise ConfigLoadError(f"Section '{key}' must be a mapping")
            mapping = _SECTIONS[key]
            for sub_key, sub_value in value.items():
                if sub_key not in mapping:
                    raise ConfigLoadError(f"Unknown option '{key}.{sub_key}'")
                values[mapping[sub_key]] = sub_value
        elif key in known:
            values[key] = value
        else:
            raise ConfigLoadError(f"Unknown option '{key}'")

    annotations = {item.name: str(item.type) for item in fields(ClientConfig)}
    for name, value in values.items():
        _check_type(name, annotations[name], value)

    try:
        return ClientConfig(**values)
    except (TypeError, ValueError) as err:
        raise ConfigLoadError(f"Invalid configuration: {err}") from err


def load_config(path: Path | str) -> ClientConfig:
    """Load client configuration from a YAML file.

    Raises:
        ConfigLoadError: If the file is missing, unparsable or has unknown
            or invalid options.
    """
    return config_from_dict(_load_yaml(Path(path)))
