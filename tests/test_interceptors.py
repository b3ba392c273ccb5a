"""Tests for the interceptor chain and standard interceptors."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from geotask_core.errors import (
    APIError,
    NotFoundError,
    RateLimitExceededError,
    ServerError,
    UnauthorizedError,
)
from geotask_core.interceptors import (
    AuthenticationInterceptor,
    CacheInterceptor,
    InterceptorChain,
    LoggingInterceptor,
    RateLimitingInterceptor,
    RetryInterceptor,
    default_chain,
)
from geotask_core.models import HttpRequest, HttpResponse


def _request(method: str = "GET", url: str = "https://api.test/tasks") -> HttpRequest:
    return HttpRequest(method=method, url=url, headers={"Content-Type": "application/json"})


def _response(status: int = 200, request: HttpRequest | None = None) -> HttpResponse:
    return HttpResponse(status=status, headers={}, body=b"{}", request=request or _request())


class _Tagger:
    """Request interceptor appending its name to a header."""

    def __init__(self, name: str) -> None:
        self.name = name

    def intercept_request(self, request: HttpRequest) -> HttpRequest:
        trail = request.headers.get("X-Trail", "")
        return request.with_header("X-Trail", f"{trail}{self.name}")


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def token_provider() -> MagicMock:
    provider = MagicMock()
    provider.get_authorization_header.return_value = "Bearer tok"
    return provider


class TestInterceptorChain:
    """Tests for folding and registration."""

    def test_request_interceptors_fold_in_order(self) -> None:
        chain = InterceptorChain()
        for name in "abc":
            chain.add_request_interceptor(_Tagger(name))
        assert chain.intercept_request(_request()).headers["X-Trail"] == "abc"

    def test_error_interceptors_can_rewrite(self) -> None:
        chain = InterceptorChain()

        class _Rewrite:
            def intercept_error(self, error: APIError) -> APIError:
                return NotFoundError()

        chain.add_error_interceptor(_Rewrite())
        assert isinstance(chain.intercept_error(ServerError(500, "x")), NotFoundError)

    def test_add_registers_every_capability(self, token_provider: MagicMock) -> None:
        chain = InterceptorChain()
        auth = AuthenticationInterceptor(token_provider)
        chain.add(auth)
        assert chain.request_interceptors == (auth,)
        assert chain.response_interceptors == (auth,)
        assert chain.error_interceptors == (auth,)

        chain.remove(auth)
        assert chain.request_interceptors == ()
        assert chain.error_interceptors == ()

    def test_add_rejects_plain_objects(self) -> None:
        with pytest.raises(TypeError):
            InterceptorChain().add(object())

    def test_empty_chain_is_identity(self) -> None:
        chain = InterceptorChain()
        request = _request()
        response = _response()
        error = ServerError(500, "x")
        assert chain.intercept_request(request) is request
        assert chain.intercept_response(response) is response
        assert chain.intercept_error(error) is error


class TestAuthenticationInterceptor:
    """Tests for bearer injection and refresh scheduling."""

    def test_injects_header(self, token_provider: MagicMock) -> None:
        request = AuthenticationInterceptor(token_provider).intercept_request(_request())
        assert request.headers["Authorization"] == "Bearer tok"

    def test_no_token_leaves_request_untouched(self, token_provider: MagicMock) -> None:
        token_provider.get_authorization_header.return_value = None
        request = _request()
        assert AuthenticationInterceptor(token_provider).intercept_request(request) is request

    def test_401_response_schedules_refresh(self, token_provider: MagicMock) -> None:
        interceptor = AuthenticationInterceptor(token_provider)
        interceptor.intercept_response(_response(200))
        token_provider.force_refresh_token.assert_not_called()
        interceptor.intercept_response(_response(401))
        token_provider.force_refresh_token.assert_called_once()

    def test_unauthorized_error_schedules_refresh_and_passes_through(
        self, token_provider: MagicMock
    ) -> None:
        error = UnauthorizedError()
        assert AuthenticationInterceptor(token_provider).intercept_error(error) is error
        token_provider.force_refresh_token.assert_called_once()


class TestLoggingInterceptor:
    """Tests for request logging."""

    def test_authorization_is_redacted(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("DEBUG", logger="geotask_core.interceptors")
        LoggingInterceptor().intercept_request(
            _request().with_header("Authorization", "Bearer secret-token")
        )
        assert "secret-token" not in caplog.text
        assert "https://api.test/tasks" in caplog.text


class TestRateLimitingInterceptor:
    """Tests for the per-minute limit."""

    def test_fails_fast_over_limit(self) -> None:
        clock = _Clock()
        limiter = RateLimitingInterceptor(2, clock=clock)
        limiter.intercept_request(_request())
        limiter.intercept_request(_request())
        with pytest.raises(RateLimitExceededError):
            limiter.intercept_request(_request())

    def test_window_resets_after_a_minute(self) -> None:
        clock = _Clock()
        limiter = RateLimitingInterceptor(1, clock=clock)
        limiter.intercept_request(_request())
        clock.now = 60.0
        limiter.intercept_request(_request())
        assert limiter.request_count == 1

    def test_pass_through_mode(self, caplog: pytest.LogCaptureFixture) -> None:
        limiter = RateLimitingInterceptor(1, fail_fast=False, clock=_Clock())
        limiter.intercept_request(_request())
        request = _request()
        assert limiter.intercept_request(request) is request
        assert "Rate limit" in caplog.text


class TestCacheInterceptor:
    """Tests for GET response caching."""

    def test_caches_successful_get(self) -> None:
        cache = CacheInterceptor(clock=_Clock())
        response = _response(200)
        cache.intercept_response(response)
        assert cache.lookup("https://api.test/tasks") is response

    def test_ignores_errors_and_non_get(self) -> None:
        cache = CacheInterceptor(clock=_Clock())
        cache.intercept_response(_response(500))
        cache.intercept_response(_response(200, _request("POST")))
        assert len(cache) == 0

    def test_entries_expire(self) -> None:
        clock = _Clock()
        cache = CacheInterceptor(ttl=10, clock=clock)
        cache.intercept_response(_response())
        clock.now = 11
        assert cache.lookup("https://api.test/tasks") is None

    def test_least_recently_used_evicted(self) -> None:
        cache = CacheInterceptor(max_entries=2, clock=_Clock())
        for name in ("a", "b"):
            cache.intercept_response(_response(request=_request(url=f"https://api.test/{name}")))
        cache.lookup("https://api.test/a")
        cache.intercept_response(_response(request=_request(url="https://api.test/c")))
        assert cache.lookup("https://api.test/b") is None
        assert cache.lookup("https://api.test/a") is not None


class TestRetryInterceptor:
    """Tests for retry eligibility tagging."""

    def test_default_policy_keeps_classification(self) -> None:
        assert RetryInterceptor().intercept_error(ServerError(500, "x")).is_retryable
        assert not RetryInterceptor().intercept_error(NotFoundError()).is_retryable

    def test_custom_policy_overrides(self) -> None:
        error = RetryInterceptor(lambda err: False).intercept_error(ServerError(503, "x"))
        assert not error.is_retryable


def test_default_chain_order(token_provider: MagicMock) -> None:
    chain = default_chain(token_provider)
    assert [type(i) for i in chain.request_interceptors] == [
        AuthenticationInterceptor,
        LoggingInterceptor,
        RateLimitingInterceptor,
    ]
    assert [type(i) for i in chain.response_interceptors] == [
        LoggingInterceptor,
        CacheInterceptor,
    ]
    assert [type(i) for i in chain.error_interceptors] == [
        LoggingInterceptor,
        RetryInterceptor,
        AuthenticationInterceptor,
    ]
