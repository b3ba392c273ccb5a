"""HTTP client for GeoTask API endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

import aiohttp
from yarl import URL

from . import codec
from .errors import (
    APIError,
    DecodingError,
    EncodingError,
    InvalidURLError,
    NetworkError,
    NoInternetConnectionError,
    RequestCancelledError,
    RequestTimeoutError,
)
from .interceptors import InterceptorChain
from .models import (
    APIRequest,
    APIResponse,
    EmptyResponse,
    ErrorResponse,
    HttpMethod,
    HttpRequest,
    HttpResponse,
)

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INITIAL_DELAY = 1.0


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class GeoTaskHttpClient:
    """HTTP client wrapper for the GeoTask REST API.

    Every call runs through the interceptor chain and either returns an
    ``APIResponse`` or raises an ``APIError`` subclass; aiohttp and decoding
    exceptions never reach the caller.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        interceptor_chain: InterceptorChain | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._chain = interceptor_chain if interceptor_chain is not None else InterceptorChain()
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_initial_delay = retry_initial_delay
        self._inflight: set[asyncio.Task[Any]] = set()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def interceptor_chain(self) -> InterceptorChain:
        return self._chain

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def _url(self, path: str, query_params: dict[str, Any] | None = None) -> str:
        if path and not path.startswith("/"):
            path = f"/{path}"
        try:
            url = URL(f"{self._base_url}{path}")
        except (TypeError, ValueError) as err:
            raise InvalidURLError(f"Invalid URL for path {path!r}") from err
        if not url.is_absolute() or not url.host:
            raise InvalidURLError(f"Invalid URL: {url}")
        if query_params:
            url = url.update_query(
                {key: _stringify(value) for key, value in query_params.items()}
            )
        return str(url)

    def _intercepted(self, error: APIError) -> APIError:
        return self._chain.intercept_error(error)

    # -------------------------------------------------------------------------
    # Core request
    # -------------------------------------------------------------------------

    async def request(
        self,
        api_request: APIRequest,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        """Execute a request and decode its body into ``response_type``.

        Raises:
            APIError: Any transport, status or decoding failure, after it
                passed the error interceptors.
        """
        task = asyncio.ensure_future(self._execute(api_request, response_type))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Cancelled through cancel_all_requests()
            raise self._intercepted(RequestCancelledError()) from None

    async def _execute(
        self, api_request: APIRequest, response_type: type[T] | Any
    ) -> APIResponse[T]:
        try:
            url = self._url(api_request.path, api_request.query_params)
        except InvalidURLError as err:
            raise self._intercepted(err) from err

        headers = dict(api_request.headers)
        if not any(key.lower() == "content-type" for key in headers):
            headers["Content-Type"] = "application/json"

        prepared = HttpRequest(
            method=api_request.method.value,
            url=url,
            headers=headers,
            body=api_request.body,
        )

        try:
            prepared = self._chain.intercept_request(prepared)
        except APIError as err:
            raise self._intercepted(err) from err

        raw = self._chain.cached_response(prepared)
        if raw is not None:
            _LOGGER.debug("%s %s served from cache", prepared.method, prepared.url)
        else:
            raw = await self._send(prepared)
            raw = self._chain.intercept_response(raw)

        if not 200 <= raw.status <= 299:
            raise self._intercepted(
                APIError.from_status_code(raw.status, self._error_message(raw.body))
            )

        try:
            data = codec.decode(raw.body, response_type)
        except DecodingError as err:
            raise self._intercepted(err) from err

        return APIResponse(data=data, status_code=raw.status, headers=raw.headers)

    async def _send(self, prepared: HttpRequest) -> HttpResponse:
        try:
            async with self._session.request(
                prepared.method,
                prepared.url,
                headers=prepared.headers,
                data=prepared.body,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                body = await resp.read()
                return HttpResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=body,
                    request=prepared,
                )
        except TimeoutError as err:
            raise self._intercepted(
                RequestTimeoutError(f"{prepared.method} {prepared.url} timed out")
            ) from err
        except aiohttp.ClientConnectorError as err:
            raise self._intercepted(NoInternetConnectionError(str(err))) from err
        except aiohttp.ClientError as err:
            raise self._intercepted(NetworkError(err)) from err

    @staticmethod
    def _error_message(body: bytes) -> str | None:
        if not body:
            return None
        try:
            return codec.decode(body, ErrorResponse).message
        except DecodingError:
            return None

    # -------------------------------------------------------------------------
    # Convenience methods
    # -------------------------------------------------------------------------

    def _serialize(self, body: Any) -> bytes | None:
        if body is None or isinstance(body, bytes):
            return body
        try:
            return codec.encode(body)
        except EncodingError as err:
            raise self._intercepted(err) from err

    async def get(
        self,
        path: str,
        *,
        query_params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        return await self.request(
            APIRequest(
                method=HttpMethod.GET,
                path=path,
                query_params=query_params,
                headers=headers or {},
            ),
            response_type,
        )

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        return await self._send_with_body(HttpMethod.POST, path, body, headers, response_type)

    async def put(
        self,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        return await self._send_with_body(HttpMethod.PUT, path, body, headers, response_type)

    async def patch(
        self,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        return await self._send_with_body(HttpMethod.PATCH, path, body, headers, response_type)

    async def delete(
        self,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        response_type: type[T] | Any = EmptyResponse,
    ) -> APIResponse[T]:
        return await self.request(
            APIRequest(method=HttpMethod.DELETE, path=path, headers=headers or {}),
            response_type,
        )

    async def _send_with_body(
        self,
        method: HttpMethod,
        path: str,
        body: Any,
        headers: dict[str, str] | None,
        response_type: type[T] | Any,
    ) -> APIResponse[T]:
        payload = self._serialize(body)
        return await self.request(
            APIRequest(method=method, path=path, body=payload, headers=headers or {}),
            response_type,
        )

    # -------------------------------------------------------------------------
    # Retry and cancellation
    # -------------------------------------------------------------------------

    async def request_with_retry(
        self,
        api_request: APIRequest,
        response_type: type[T] | Any = EmptyResponse,
        *,
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> APIResponse[T]:
        """Execute a request, retrying retryable errors with exponential backoff.

        Args:
            api_request: Request to (re-)issue.
            response_type: Type to decode the body into.
            max_retries: Total number of attempts (client default if None).
            initial_delay: Delay before the second attempt; doubles afterwards
                (client default if None).

        Raises:
            APIError: The last attempt's error once attempts are exhausted or
                a non-retryable error occurs.
        """
        if max_retries is None:
            max_retries = self._max_retries
        delay = self._retry_initial_delay if initial_delay is None else initial_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.request(api_request, response_type)
            except APIError as err:
                if attempt >= max_retries or not err.is_retryable:
                    raise
                _LOGGER.debug(
                    "Retrying %s %s in %.2fs (attempt %d/%d): %s",
                    api_request.method.value,
                    api_request.path,
                    delay,
                    attempt + 1,
                    max_retries,
                    err,
                )
                await asyncio.sleep(delay)
                delay *= 2

    def cancel_all_requests(self) -> int:
        """Cancel every in-flight request.

        Returns:
            Number of requests that were cancelled.
        """
        cancelled = 0
        for task in list(self._inflight):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            _LOGGER.info("Cancelled %d in-flight request(s)", cancelled)
        return cancelled
