"""Wiring of the GeoTask client stack.

The interceptor chain depends on the session manager for tokens, and the
session manager depends on the API service built on the chain. The chain is
therefore created empty, handed to the HTTP client, and populated once the
session manager exists.
"""

from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from .api import GeoTaskApiService
from .config import ClientConfig
from .http import GeoTaskHttpClient
from .interceptors import CacheInterceptor, InterceptorChain, configure_default_chain
from .realtime import RealtimeClient
from .session import SessionManager
from .storage import KeyValueStore


@dataclass(frozen=True)
class GeoTaskClient:
    """The assembled client components."""

    config: ClientConfig
    http: GeoTaskHttpClient
    api: GeoTaskApiService
    session_manager: SessionManager
    realtime: RealtimeClient
    cache: CacheInterceptor

    async def connect_realtime(self) -> bool:
        """Connect the realtime client with the current access token.

        Returns:
            False when no realtime URL is configured or nobody is logged in.
        """
        url = self.config.realtime_url
        token = self.session_manager.get_valid_token()
        if not url or token is None:
            return False
        return await self.realtime.connect(url, token)

    async def close(self) -> None:
        """Stop background work. The aiohttp session stays owned by the caller."""
        await self.realtime.disconnect()
        self.http.cancel_all_requests()
        await self.session_manager.close()


def build_client(
    config: ClientConfig,
    session: aiohttp.ClientSession,
    store: KeyValueStore,
) -> GeoTaskClient:
    """Assemble HTTP client, API service, session manager and realtime client."""
    chain = InterceptorChain()
    http = GeoTaskHttpClient(
        session,
        config.base_url,
        interceptor_chain=chain,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
        retry_initial_delay=config.retry_initial_delay,
    )
    api = GeoTaskApiService(http)
    manager = SessionManager(
        api,
        store,
        refresh_threshold=config.refresh_threshold,
        default_token_lifetime=config.default_token_lifetime,
        storage_key=config.session_storage_key,
    )

    cache = CacheInterceptor(config.cache_max_entries, config.cache_ttl)
    configure_default_chain(
        chain,
        manager,
        requests_per_minute=config.requests_per_minute,
        rate_limit_fail_fast=config.rate_limit_fail_fast,
        cache=cache,
    )
    # Cached bodies belong to the signed-in user
    manager.add_current_session_observer(
        lambda current: cache.clear() if current is None else None
    )

    realtime = RealtimeClient(
        heartbeat_interval=config.heartbeat_interval,
        heartbeat_timeout=config.heartbeat_timeout,
        reconnect_delay=config.reconnect_delay,
        reconnect_max_delay=config.reconnect_max_delay,
        max_reconnect_attempts=config.max_reconnect_attempts,
        typing_ttl=config.typing_ttl,
        token_provider=manager.get_valid_token,
    )

    return GeoTaskClient(
        config=config,
        http=http,
        api=api,
        session_manager=manager,
        realtime=realtime,
        cache=cache,
    )
