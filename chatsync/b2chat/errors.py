"""B2Chat API error hierarchy."""

from __future__ import annotations

from typing import Any

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
AUTH_STATUS_CODES = (401, 403)


class B2ChatAPIError(Exception):
    """Base exception for B2Chat API errors.

    Carries enough of the failed exchange to diagnose it from the run log.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
        endpoint: str | None = None,
        request_url: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.endpoint = endpoint
        self.request_url = request_url
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in AUTH_STATUS_CODES

    @property
    def category(self) -> str:
        return "transient_upstream" if self.is_retryable else "fatal_upstream"

    def user_message(self) -> str:
        if self.status_code == 401:
            return "B2Chat API authentication failed. Check the username and password."
        if self.status_code == 403:
            return "Access denied to B2Chat API. Check the account permissions."
        if self.status_code == 404:
            return "B2Chat API endpoint not found."
        if self.status_code == 429:
            return "Too many requests to B2Chat API. Wait before trying again."
        if self.is_retryable:
            return "B2Chat API server error. The service may be temporarily unavailable."
        return f"B2Chat API error ({self.status_code}): {self.message}"

    def diagnostics(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "endpoint": self.endpoint,
            "requestUrl": self.request_url,
            "rawResponse": self.response,
        }


class B2ChatAuthError(B2ChatAPIError):
    """Authentication or authorization failure."""

    pass


class B2ChatRateLimitError(B2ChatAPIError):
    """Rate limit exceeded (upstream 429 or local quota)."""

    pass


class B2ChatTransientError(B2ChatAPIError):
    """Server error or timeout that may succeed on retry."""

    @property
    def is_retryable(self) -> bool:
        return True


class B2ChatPayloadError(B2ChatAPIError):
    """Response body is not the documented shape."""

    pass
