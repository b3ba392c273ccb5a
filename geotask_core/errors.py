"""Error types for GeoTask API and realtime interactions.

Every failure produced by the HTTP pipeline is an ``APIError`` subclass and
every realtime failure is a ``RealtimeError`` subclass. Library exceptions
(aiohttp, websockets, json) are always converted before reaching callers.
"""

from __future__ import annotations


class GeoTaskClientError(Exception):
    """Base error for GeoTask client failures."""


# -----------------------------------------------------------------------------
# HTTP / API taxonomy
# -----------------------------------------------------------------------------


class APIError(GeoTaskClientError):
    """Base error for the HTTP request pipeline.

    Subclasses carry a human readable ``description``, a ``failure_reason``
    and a ``recovery_suggestion`` so callers can present them without
    switching on the concrete type.
    """

    description = "Unknown error occurred"
    failure_reason = "An unknown error occurred"
    recovery_suggestion = "Please try again or contact support"
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.description)
        self._retryable_override: bool | None = None

    @property
    def is_retryable(self) -> bool:
        """Whether re-issuing the same request may succeed."""
        if self._retryable_override is not None:
            return self._retryable_override
        return self.retryable

    @is_retryable.setter
    def is_retryable(self, value: bool) -> None:
        self._retryable_override = value

    @property
    def should_refresh_token(self) -> bool:
        return False

    @property
    def status_code(self) -> int | None:
        return None

    @staticmethod
    def from_status_code(status: int, message: str | None = None) -> APIError:
        """Map a non-2xx HTTP status onto the error taxonomy."""
        if status == 401:
            return UnauthorizedError()
        if status == 403:
            return ForbiddenError()
        if status == 404:
            return NotFoundError()
        if status == 429:
            return RateLimitExceededError()
        if 500 <= status <= 599:
            return ServerError(status, message or "Server error")
        if 400 <= status <= 499:
            return ClientError(status, message or "Bad request")
        return InvalidResponseError(f"Unexpected HTTP status {status}")


class _CausedAPIError(APIError):
    """APIError wrapping an underlying exception."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{self.description}: {cause}")


class InvalidURLError(APIError):
    description = "Invalid URL"
    failure_reason = "The provided URL is not valid"
    recovery_suggestion = "Check the URL format"


class InvalidRequestError(APIError):
    description = "Invalid request"
    failure_reason = "The request format is invalid"
    recovery_suggestion = "Verify the request parameters"


class InvalidResponseError(APIError):
    description = "Invalid response"
    failure_reason = "The server response is invalid"
    recovery_suggestion = "Check the server response format"


class NetworkError(_CausedAPIError):
    description = "Network error"
    failure_reason = "A network error occurred"
    recovery_suggestion = "Check your internet connection and try again"
    retryable = True


class DecodingError(_CausedAPIError):
    description = "Decoding error"
    failure_reason = "Failed to decode the response"
    recovery_suggestion = "The response format may have changed"


class EncodingError(_CausedAPIError):
    description = "Encoding error"
    failure_reason = "Failed to encode the request"
    recovery_suggestion = "Check the request data format"


class _StatusAPIError(APIError):
    """APIError carrying the HTTP status and server message."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{self.description} ({code}): {message}")

    @property
    def status_code(self) -> int | None:
        return self.code


class ServerError(_StatusAPIError):
    description = "Server error"
    failure_reason = "The server encountered an error"
    recovery_suggestion = "Try again later or contact support"
    retryable = True


class ClientError(_StatusAPIError):
    description = "Client error"
    failure_reason = "The request was invalid"
    recovery_suggestion = "Check your request parameters"


class UnauthorizedError(APIError):
    description = "Unauthorized access"
    failure_reason = "Authentication required"
    recovery_suggestion = "Please log in again"

    @property
    def should_refresh_token(self) -> bool:
        return True

    @property
    def status_code(self) -> int | None:
        return 401


class ForbiddenError(APIError):
    description = "Access forbidden"
    failure_reason = "Access denied"
    recovery_suggestion = "You don't have permission to access this resource"

    @property
    def status_code(self) -> int | None:
        return 403


class NotFoundError(APIError):
    description = "Resource not found"
    failure_reason = "The requested resource was not found"
    recovery_suggestion = "The requested resource may have been moved or deleted"

    @property
    def status_code(self) -> int | None:
        return 404


class RateLimitExceededError(APIError):
    description = "Rate limit exceeded"
    failure_reason = "Too many requests"
    recovery_suggestion = "Please wait before making another request"

    @property
    def status_code(self) -> int | None:
        return 429


class RequestTimeoutError(APIError):
    description = "Request timeout"
    failure_reason = "The request took too long"
    recovery_suggestion = "Try again with a better connection"
    retryable = True


class NoInternetConnectionError(APIError):
    description = "No internet connection"
    failure_reason = "No internet connection available"
    recovery_suggestion = "Connect to the internet and try again"
    retryable = True


class RequestCancelledError(APIError):
    description = "Request cancelled"
    failure_reason = "The request was cancelled"
    recovery_suggestion = "The request was cancelled by the user or system"


class UnknownAPIError(APIError):
    """Fallback for failures that fit no other category."""


# -----------------------------------------------------------------------------
# Realtime taxonomy
# -----------------------------------------------------------------------------


class RealtimeError(GeoTaskClientError):
    """Base error for the realtime messaging client."""

    description = "Realtime error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.description)


class ConnectionFailedError(RealtimeError):
    description = "Failed to connect to WebSocket server"


class ConnectionLostError(RealtimeError):
    description = "WebSocket connection was lost"


class MessageSendFailedError(RealtimeError):
    description = "Failed to send message"


class MessageReceiveFailedError(RealtimeError):
    description = "Failed to receive message"


class InvalidMessageError(RealtimeError):
    description = "Invalid message format"


class AuthenticationFailedError(RealtimeError):
    description = "Authentication failed"


class RealtimeRateLimitExceededError(RealtimeError):
    description = "Rate limit exceeded"


class RealtimeServerError(RealtimeError):
    """Error reported by the realtime server."""

    description = "Server error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Server error: {message}")


class RealtimeNetworkError(RealtimeError):
    """Transport failure underneath the realtime connection."""

    description = "Network error"

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Network error: {cause}")
