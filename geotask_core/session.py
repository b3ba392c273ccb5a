"""Session manager for authenticated GeoTask access.

This module owns the authenticated session lifecycle:
- login / register / logout
- write-through persistence of the session blob
- expiry-driven refresh scheduling
- single-flight token refresh
- observer notifications for UI collaborators

Usage:
    manager = SessionManager(api_service, store)
    manager.add_session_observer(on_state)
    await manager.login("me@example.com", "secret")
    header = manager.get_authorization_header()
    await manager.logout()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from . import codec
from .api import AuthApi
from .errors import APIError, DecodingError, EncodingError, UnauthorizedError
from .events import Observable, Signal, Unsubscribe
from .models import LoginResponse, Session, SessionState, Token, User
from .storage import KeyValueStore

_LOGGER = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "user_session"
DEFAULT_REFRESH_THRESHOLD = 5 * 60.0
DEFAULT_TOKEN_LIFETIME = 60 * 60.0

# Scratch keys written by earlier app versions
TEMPORARY_KEYS: tuple[str, ...] = ("temp_session_data", "pending_requests")


class BiometricGate(Protocol):
    """External yes/no gate consulted before exposing a cached session."""

    async def authenticate(self, reason: str) -> bool: ...


class SessionManager:
    """Owns the authenticated session and its token lifecycle.

    State machine:
        unauthenticated --login/register ok--> authenticated
        *               --login/register failed--> unauthenticated
        authenticated   --logout--> unauthenticated
        authenticated   --refresh ok--> authenticated (new token)
        authenticated   --refresh failed--> expired (storage cleared)

    Refresh is single-flight: at most one refresh call is outstanding and
    every caller asking for a refresh meanwhile shares its outcome.
    """

    def __init__(
        self,
        api: AuthApi,
        store: KeyValueStore,
        *,
        refresh_threshold: float = DEFAULT_REFRESH_THRESHOLD,
        default_token_lifetime: float = DEFAULT_TOKEN_LIFETIME,
        storage_key: str = DEFAULT_STORAGE_KEY,
        device_id: str = "",
    ) -> None:
        """Initialize the manager and restore any persisted session.

        Args:
            api: Auth API used for login, register, logout and refresh.
            store: Key-value store holding the serialized session.
            refresh_threshold: Refresh this many seconds before expiry.
            default_token_lifetime: Token lifetime when the server gives none.
            storage_key: Store key of the session blob.
            device_id: Device identifier recorded on new sessions.
        """
        self._api = api
        self._store = store
        self._refresh_threshold = refresh_threshold
        self._default_token_lifetime = timedelta(seconds=default_token_lifetime)
        self._storage_key = storage_key
        self._device_id = device_id

        self._session: Session | None = None
        self._state: Observable[SessionState] = Observable(
            "session_state", SessionState.UNAUTHENTICATED
        )
        self._refreshing: Observable[bool] = Observable("is_refreshing", False)
        self._session_changed: Signal[Session | None] = Signal("current_session")

        self._refresh_task: asyncio.Task[bool] | None = None
        self._refresh_timer: asyncio.TimerHandle | None = None
        # Set when timers could not be armed because no loop was running
        self._timers_pending = False

        self._restore_session()

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def session_state(self) -> SessionState:
        return self._state.value

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def current_user(self) -> User | None:
        return self._session.user if self._session else None

    @property
    def current_token(self) -> Token | None:
        return self._session.token if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._state.value is SessionState.AUTHENTICATED and self._session is not None

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing.value

    @property
    def session_duration(self) -> float | None:
        """Seconds since the current session logged in."""
        if self._session is None:
            return None
        return (datetime.now(tz=UTC) - self._session.last_login_at).total_seconds()

    # -------------------------------------------------------------------------
    # Public API: Observers
    # -------------------------------------------------------------------------

    def add_session_observer(
        self, callback: Callable[[SessionState], None], *, emit_current: bool = False
    ) -> Unsubscribe:
        """Observe session state changes in the order they happen."""
        return self._state.subscribe(callback, emit_current=emit_current)

    def add_authentication_observer(
        self, callback: Callable[[bool], None], *, emit_current: bool = False
    ) -> Unsubscribe:
        """Observe whether the state is authenticated."""
        return self._state.subscribe(
            lambda state: callback(state is SessionState.AUTHENTICATED),
            emit_current=emit_current,
        )

    def add_token_refresh_observer(
        self, callback: Callable[[bool], None], *, emit_current: bool = False
    ) -> Unsubscribe:
        """Observe the is_refreshing flag."""
        return self._refreshing.subscribe(callback, emit_current=emit_current)

    def add_current_session_observer(
        self, callback: Callable[[Session | None], None]
    ) -> Unsubscribe:
        """Observe every replacement of the current session."""
        return self._session_changed.subscribe(callback)

    # -------------------------------------------------------------------------
    # Public API: Authentication
    # -------------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Session:
        """Log in and persist the new session.

        Raises:
            APIError: Login failed; state returns to unauthenticated and
                storage is untouched.
        """
        self._state.set(SessionState.LOADING)
        try:
            response = await self._api.login(email, password)
        except (APIError, asyncio.CancelledError):
            self._state.set(SessionState.UNAUTHENTICATED)
            raise
        return self._establish_session(response)

    async def login_with_phone(self, phone: str, password: str) -> Session:
        return await self.login(phone, password)

    async def register(self, email: str, password: str, name: str) -> Session:
        """Register a new account and persist the resulting session.

        Raises:
            APIError: Registration failed; state returns to unauthenticated.
        """
        self._state.set(SessionState.LOADING)
        try:
            response = await self._api.register(email, password, name)
        except (APIError, asyncio.CancelledError):
            self._state.set(SessionState.UNAUTHENTICATED)
            raise
        return self._establish_session(response)

    async def login_with_biometrics(
        self, gate: BiometricGate, *, reason: str = "Unlock your GeoTask session"
    ) -> Session:
        """Expose the cached session once the biometric gate approves.

        Raises:
            UnauthorizedError: No cached session, or the gate declined.
        """
        session = self._session
        if session is None or session.token.is_expired:
            raise UnauthorizedError("No cached session available")
        if not await gate.authenticate(reason):
            raise UnauthorizedError("Biometric authentication declined")
        return session

    async def logout(self) -> None:
        """Log out remotely and clear the local session.

        The local session is cleared even when the remote call fails.
        """
        session = self._session
        if session is None:
            self._clear_session()
            return
        try:
            await self._api.logout()
        except APIError as err:
            _LOGGER.warning("[%s] Remote logout failed: %s", session.user.id, err)
        finally:
            self._clear_session()
        _LOGGER.info("[%s] Logged out", session.user.id)

    # -------------------------------------------------------------------------
    # Public API: Tokens
    # -------------------------------------------------------------------------

    def get_valid_token(self) -> str | None:
        """Return the current access token without waiting.

        An expired token returns None and triggers a refresh; callers retry
        once the refresh settles. A token close to expiry is still returned
        and refreshed in the background.
        """
        token = self._valid_token()
        return token.access_token if token else None

    def get_authorization_header(self) -> str | None:
        """Return ``"<type> <access token>"`` or None (see get_valid_token)."""
        token = self._valid_token()
        return token.authorization_header if token else None

    def force_refresh_token(self) -> None:
        """Trigger a refresh without waiting for it."""
        self._start_refresh()

    async def refresh_token(self) -> bool:
        """Refresh the token, joining an in-flight refresh if there is one.

        Returns:
            True if the session now holds a refreshed token.
        """
        task = self._start_refresh()
        if task is None:
            return False
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Shared refresh cancelled by logout() or close()
            return False

    # -------------------------------------------------------------------------
    # Public API: Session maintenance
    # -------------------------------------------------------------------------

    def update_device_id(self, device_id: str) -> None:
        session = self._session
        if session is None:
            return
        self._save_session(
            Session(
                user=session.user,
                token=session.token,
                last_login_at=session.last_login_at,
                device_id=device_id,
            )
        )

    def validate_session(self) -> bool:
        """Re-derive the state from the current session's token."""
        session = self._session
        if session is None:
            self._state.set(SessionState.UNAUTHENTICATED)
            return False
        if session.token.is_expired:
            self._state.set(SessionState.EXPIRED)
            return False
        self._state.set(SessionState.AUTHENTICATED)
        return True

    def get_session_analytics(self) -> dict[str, Any]:
        session = self._session
        if session is None:
            return {}
        return {
            "user_id": session.user.id,
            "session_duration": self.session_duration or 0.0,
            "device_id": session.device_id,
            "last_login": session.last_login_at,
            "token_expires_at": session.token.expires_at,
            "is_token_expired": session.token.is_expired,
            "is_token_expiring_soon": session.token.is_expiring_soon,
        }

    def cleanup_session(self) -> None:
        """Remove temporary data left next to the session blob."""
        for key in TEMPORARY_KEYS:
            self._store.remove(key)

    def start(self) -> None:
        """Arm timers deferred because the manager was built outside a loop.

        Must be called from a running event loop.
        """
        if not self._timers_pending:
            return
        self._timers_pending = False
        session = self._session
        if session is None:
            return
        if session.token.expires_in <= self._refresh_threshold:
            self._start_refresh()
        else:
            self._arm_refresh_timer(session.token)

    async def close(self) -> None:
        """Stop timers and any in-flight refresh. The session is kept."""
        self._cancel_refresh_timer()
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
        self._refreshing.set(False)

    # -------------------------------------------------------------------------
    # Internal: Persistence
    # -------------------------------------------------------------------------

    def _restore_session(self) -> None:
        blob = self._store.get(self._storage_key)
        if blob is None:
            self._state.set(SessionState.UNAUTHENTICATED)
            return

        try:
            session = codec.decode(blob, Session)
        except DecodingError as err:
            _LOGGER.warning("Discarding unreadable persisted session: %s", err)
            self._store.remove(self._storage_key)
            self._state.set(SessionState.UNAUTHENTICATED)
            return

        if session.token.is_expired:
            _LOGGER.info("[%s] Persisted session expired", session.user.id)
            self._store.remove(self._storage_key)
            self._state.set(SessionState.EXPIRED)
            return

        self._session = session
        self._state.set(SessionState.AUTHENTICATED)
        _LOGGER.debug("[%s] Restored persisted session", session.user.id)

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._timers_pending = True
            return

        if session.token.expires_in <= self._refresh_threshold:
            self._start_refresh()
        else:
            self._arm_refresh_timer(session.token)

    def _establish_session(self, response: LoginResponse) -> Session:
        session = Session(
            user=response.user,
            token=Token.from_login_response(
                response, default_lifetime=self._default_token_lifetime
            ),
            last_login_at=datetime.now(tz=UTC),
            device_id=self._device_id,
        )
        try:
            self._save_session(session)
        except (EncodingError, OSError):
            self._state.set(SessionState.UNAUTHENTICATED)
            raise
        _LOGGER.info("[%s] Logged in", session.user.id)
        return session

    def _save_session(self, session: Session) -> None:
        """Persist first, then make the session authoritative in memory."""
        blob = codec.encode(session)
        self._store.set(self._storage_key, blob)

        self._session = session
        self._state.set(SessionState.AUTHENTICATED)
        self._session_changed.emit(session)
        self._arm_refresh_timer(session.token)

    def _clear_session(self, state: SessionState = SessionState.UNAUTHENTICATED) -> None:
        self._cancel_refresh_timer()

        task = self._refresh_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            self._refresh_task = None
            self._refreshing.set(False)

        try:
            self._store.remove(self._storage_key)
        except OSError as err:
            _LOGGER.error("Failed to remove persisted session: %s", err)

        had_session = self._session is not None
        self._session = None
        self._state.set(state)
        if had_session:
            self._session_changed.emit(None)

    # -------------------------------------------------------------------------
    # Internal: Refresh
    # -------------------------------------------------------------------------

    def _valid_token(self) -> Token | None:
        session = self._session
        if session is None:
            return None
        token = session.token
        if token.is_expired:
            self._start_refresh()
            return None
        if token.expires_in <= self._refresh_threshold:
            self._start_refresh()
        return token

    def _start_refresh(self) -> asyncio.Task[bool] | None:
        session = self._session
        if session is None:
            return None

        task = self._refresh_task
        if task is not None and not task.done():
            return task

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _LOGGER.debug("[%s] No running loop, refresh deferred", session.user.id)
            self._timers_pending = True
            return None

        self._cancel_refresh_timer()
        self._refreshing.set(True)
        self._refresh_task = loop.create_task(self._perform_refresh(session))
        return self._refresh_task

    async def _perform_refresh(self, session: Session) -> bool:
        user_id = session.user.id
        _LOGGER.info("[%s] Refreshing access token", user_id)
        try:
            try:
                response = await self._api.refresh_token(session.token.refresh_token)
            except APIError as err:
                _LOGGER.warning("[%s] Token refresh failed: %s", user_id, err)
                self._clear_session(SessionState.EXPIRED)
                return False

            current = self._session
            if current is None or current.user.id != user_id:
                _LOGGER.debug("[%s] Session changed during refresh, discarding", user_id)
                return False

            refreshed = Session(
                user=current.user,
                token=Token.from_login_response(
                    response, default_lifetime=self._default_token_lifetime
                ),
                last_login_at=current.last_login_at,
                device_id=current.device_id,
            )
            try:
                self._save_session(refreshed)
            except (EncodingError, OSError) as err:
                _LOGGER.error("[%s] Failed to persist refreshed session: %s", user_id, err)
                self._clear_session(SessionState.EXPIRED)
                return False

            _LOGGER.info("[%s] Access token refreshed", user_id)
            return True
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None
                self._refreshing.set(False)

    # -------------------------------------------------------------------------
    # Internal: Timer
    # -------------------------------------------------------------------------

    def _arm_refresh_timer(self, token: Token) -> None:
        self._cancel_refresh_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._timers_pending = True
            return
        delay = max(token.expires_in - self._refresh_threshold, 0.0)
        if delay == 0 and self._refresh_task is asyncio.current_task():
            # A refresh that returned a short-lived token retries at expiry
            delay = token.expires_in
            if delay <= 0:
                _LOGGER.warning("Refreshed token is already expired")
                return
        self._refresh_timer = loop.call_later(delay, self._on_refresh_timer)
        _LOGGER.debug("Token refresh scheduled in %.0fs", delay)

    def _on_refresh_timer(self) -> None:
        self._refresh_timer = None
        self._start_refresh()

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None
