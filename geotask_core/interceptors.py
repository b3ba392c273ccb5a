"""Interceptor chain for the GeoTask HTTP client.

The chain keeps three independent, ordered lists:

- request interceptors transform the outgoing ``HttpRequest``
- response interceptors transform every received ``HttpResponse``
- error interceptors observe or rewrite every ``APIError``

Each list is folded left-to-right in registration order. A single object may
implement several capabilities; ``InterceptorChain.add`` registers it into
every list it supports.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .errors import APIError, RateLimitExceededError, UnauthorizedError
from .models import HttpRequest, HttpResponse

_LOGGER = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = 60.0


@runtime_checkable
class RequestInterceptor(Protocol):
    def intercept_request(self, request: HttpRequest) -> HttpRequest: ...


@runtime_checkable
class ResponseInterceptor(Protocol):
    def intercept_response(self, response: HttpResponse) -> HttpResponse: ...


@runtime_checkable
class ErrorInterceptor(Protocol):
    def intercept_error(self, error: APIError) -> APIError: ...


@runtime_checkable
class ResponseCache(Protocol):
    """Response interceptor that can also answer GET requests from storage."""

    def lookup(self, url: str) -> HttpResponse | None: ...


class TokenProvider(Protocol):
    """Subset of the session manager used for authentication."""

    def get_authorization_header(self) -> str | None: ...

    def force_refresh_token(self) -> None: ...


class InterceptorChain:
    """Ordered request/response/error pipelines."""

    def __init__(self) -> None:
        self._request_interceptors: list[RequestInterceptor] = []
        self._response_interceptors: list[ResponseInterceptor] = []
        self._error_interceptors: list[ErrorInterceptor] = []

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._request_interceptors.append(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self._response_interceptors.append(interceptor)

    def add_error_interceptor(self, interceptor: ErrorInterceptor) -> None:
        self._error_interceptors.append(interceptor)

    def add(self, interceptor: object) -> None:
        """Register an interceptor into every list whose capability it implements.

        Raises:
            TypeError: If the object implements no interceptor capability.
        """
        registered = False
        if isinstance(interceptor, RequestInterceptor):
            self.add_request_interceptor(interceptor)
            registered = True
        if isinstance(interceptor, ResponseInterceptor):
            self.add_response_interceptor(interceptor)
            registered = True
        if isinstance(interceptor, ErrorInterceptor):
            self.add_error_interceptor(interceptor)
            registered = True
        if not registered:
            raise TypeError(
                f"{type(interceptor).__name__} implements no interceptor capability"
            )

    def remove_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._request_interceptors.remove(interceptor)

    def remove_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self._response_interceptors.remove(interceptor)

    def remove_error_interceptor(self, interceptor: ErrorInterceptor) -> None:
        self._error_interceptors.remove(interceptor)

    def remove(self, interceptor: object) -> None:
        """Remove an interceptor from every list it is registered in."""
        for interceptors in (
            self._request_interceptors,
            self._response_interceptors,
            self._error_interceptors,
        ):
            while interceptor in interceptors:
                interceptors.remove(interceptor)  # type: ignore[arg-type]

    @property
    def request_interceptors(self) -> tuple[RequestInterceptor, ...]:
        return tuple(self._request_interceptors)

    @property
    def response_interceptors(self) -> tuple[ResponseInterceptor, ...]:
        return tuple(self._response_interceptors)

    @property
    def error_interceptors(self) -> tuple[ErrorInterceptor, ...]:
        return tuple(self._error_interceptors)

    # -------------------------------------------------------------------------
    # Folding
    # -------------------------------------------------------------------------

    def intercept_request(self, request: HttpRequest) -> HttpRequest:
        for interceptor in self._request_interceptors:
            request = interceptor.intercept_request(request)
        return request

    def intercept_response(self, response: HttpResponse) -> HttpResponse:
        for interceptor in self._response_interceptors:
            response = interceptor.intercept_response(response)
        return response

    def intercept_error(self, error: APIError) -> APIError:
        for interceptor in self._error_interceptors:
            error = interceptor.intercept_error(error)
        return error

    def cached_response(self, request: HttpRequest) -> HttpResponse | None:
        """Return a stored response for a GET request, if any cache holds one."""
        if request.method != "GET":
            return None
        for interceptor in self._response_interceptors:
            if isinstance(interceptor, ResponseCache):
                cached = interceptor.lookup(request.url)
                if cached is not None:
                    return cached
        return None


# -----------------------------------------------------------------------------
# Standard interceptors
# -----------------------------------------------------------------------------


class AuthenticationInterceptor:
    """Inject the bearer token and schedule refresh on 401.

    Refresh is only scheduled; the failing call still surfaces its error and
    the new token is used by subsequent requests.
    """

    def __init__(self, token_provider: TokenProvider) -> None:
        self._token_provider = token_provider

    def intercept_request(self, request: HttpRequest) -> HttpRequest:
        header = self._token_provider.get_authorization_header()
        if header is None:
            return request
        return request.with_header("Authorization", header)

    def intercept_response(self, response: HttpResponse) -> HttpResponse:
        if response.status == 401:
            self._token_provider.force_refresh_token()
        return response

    def intercept_error(self, error: APIError) -> APIError:
        if isinstance(error, UnauthorizedError):
            self._token_provider.force_refresh_token()
        return error


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        key: ("***" if key.lower() == "authorization" else value)
        for key, value in headers.items()
    }


class LoggingInterceptor:
    """Log requests, responses and errors at debug level."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _LOGGER

    def intercept_request(self, request: HttpRequest) -> HttpRequest:
        self._logger.debug(
            "API request: %s %s headers=%s body=%d bytes",
            request.method,
            request.url,
            _redact_headers(request.headers),
            len(request.body or b""),
        )
        return request

    def intercept_response(self, response: HttpResponse) -> HttpResponse:
        self._logger.debug(
            "API response: %s %s -> %d (%d bytes)",
            response.request.method,
            response.request.url,
            response.status,
            len(response.body),
        )
        return response

    def intercept_error(self, error: APIError) -> APIError:
        self._logger.debug("API error: %s: %s", type(error).__name__, error)
        return error


class RateLimitingInterceptor:
    """Client-side requests-per-minute limit.

    The counter resets after every 60 seconds of wall time. Over the limit,
    requests fail fast with ``RateLimitExceededError``; with
    ``fail_fast=False`` they are only logged and let through.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        *,
        fail_fast: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._requests_per_minute = requests_per_minute
        self._fail_fast = fail_fast
        self._clock = clock
        self._request_count = 0
        self._window_start = clock()

    @property
    def request_count(self) -> int:
        return self._request_count

    def intercept_request(self, request: HttpRequest) -> HttpRequest:
        now = self._clock()
        if now - self._window_start >= RATE_LIMIT_WINDOW:
            self._request_count = 0
            self._window_start = now

        if self._request_count >= self._requests_per_minute:
            if self._fail_fast:
                raise RateLimitExceededError(
                    f"Client rate limit of {self._requests_per_minute}/min reached"
                )
            _LOGGER.warning(
                "Rate limit of %d/min exceeded for %s %s",
                self._requests_per_minute,
                request.method,
                request.url,
            )
            return request

        self._request_count += 1
        return request


class CacheInterceptor:
    """Keep successful GET responses for later lookup."""

    def __init__(
        self,
        max_entries: int = 128,
        ttl: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, HttpResponse]] = OrderedDict()

    def intercept_response(self, response: HttpResponse) -> HttpResponse:
        if response.request.method != "GET" or not 200 <= response.status <= 299:
            return response
        url = response.request.url
        self._entries[url] = (self._clock(), response)
        self._entries.move_to_end(url)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return response

    def lookup(self, url: str) -> HttpResponse | None:
        """Return a cached response for ``url`` if it is still fresh."""
        entry = self._entries.get(url)
        if entry is None:
            return None
        stored_at, response = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[url]
            return None
        self._entries.move_to_end(url)
        return response

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def default_retry_policy(error: APIError) -> bool:
    return error.retryable


class RetryInterceptor:
    """Tag errors with their retry eligibility."""

    def __init__(
        self, should_retry: Callable[[APIError], bool] = default_retry_policy
    ) -> None:
        self._should_retry = should_retry

    def intercept_error(self, error: APIError) -> APIError:
        error.is_retryable = self._should_retry(error)
        return error


def configure_default_chain(
    chain: InterceptorChain,
    token_provider: TokenProvider | None = None,
    *,
    requests_per_minute: int = 60,
    rate_limit_fail_fast: bool = True,
    cache: CacheInterceptor | None = None,
    retry_policy: Callable[[APIError], bool] = default_retry_policy,
) -> InterceptorChain:
    """Install the standard interceptors into ``chain``.

    Request: authentication, logging, rate limiting.
    Response: logging, caching.
    Error: logging, retry tagging, authentication (refresh on 401).
    """
    auth = AuthenticationInterceptor(token_provider) if token_provider else None
    logging_interceptor = LoggingInterceptor()

    if auth is not None:
        chain.add_request_interceptor(auth)
    chain.add_request_interceptor(logging_interceptor)
    chain.add_request_interceptor(
        RateLimitingInterceptor(requests_per_minute, fail_fast=rate_limit_fail_fast)
    )

    chain.add_response_interceptor(logging_interceptor)
    chain.add_response_interceptor(cache or CacheInterceptor())

    chain.add_error_interceptor(logging_interceptor)
    chain.add_error_interceptor(RetryInterceptor(retry_policy))
    if auth is not None:
        chain.add_error_interceptor(auth)

    return chain


def default_chain(
    token_provider: TokenProvider | None = None,
    *,
    requests_per_minute: int = 60,
    rate_limit_fail_fast: bool = True,
) -> InterceptorChain:
    """Build a new chain with the standard interceptors."""
    return configure_default_chain(
        InterceptorChain(),
        token_provider,
        requests_per_minute=requests_per_minute,
        rate_limit_fail_fast=rate_limit_fail_fast,
    )
