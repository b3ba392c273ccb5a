"""Pytest configuration and fixtures for geotask_core tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from geotask_core.models import LoginResponse, Session, Token, User


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    read_data: bytes | None = None,
    headers: dict[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response usable as ``async with``.

    Args:
        status: HTTP status code
        json_data: Body, serialized to JSON for read()
        read_data: Raw body returned from read(); wins over json_data
        headers: Response headers

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.headers = headers or {"Content-Type": "application/json"}

    if read_data is None:
        read_data = json.dumps(json_data).encode() if json_data is not None else b""
    response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


@pytest.fixture
def user() -> User:
    return User(id="u1", name="Ann", email="ann@example.com")


def make_token(expires_in: float = 3600.0, access: str = "access-1") -> Token:
    return Token(
        access_token=access,
        refresh_token=f"refresh-{access}",
        expires_at=datetime.now(tz=UTC) + timedelta(seconds=expires_in),
    )


def make_session(user: User, expires_in: float = 3600.0, access: str = "access-1") -> Session:
    return Session(user=user, token=make_token(expires_in, access))


def login_response(user: User, access: str = "access-1", expires_in: int = 3600) -> LoginResponse:
    return LoginResponse(
        token=access,
        refresh_token=f"refresh-{access}",
        user=user,
        expires_in=expires_in,
    )
