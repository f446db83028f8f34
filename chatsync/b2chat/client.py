"""B2Chat API client - async wrapper around the export endpoints."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

import httpx

from ..config import settings
from .errors import (
    B2ChatAPIError,
    B2ChatAuthError,
    B2ChatPayloadError,
    B2ChatRateLimitError,
    B2ChatTransientError,
)
from .queue import RateLimitedQueue

logger = logging.getLogger(__name__)

__all__ = [
    "B2ChatAPIError",
    "B2ChatAuthError",
    "B2ChatClient",
    "B2ChatPayloadError",
    "B2ChatRateLimitError",
    "B2ChatTransientError",
    "ExportPage",
]

# entity type -> (endpoint, items key, from param, to param)
EXPORT_ENDPOINTS = {
    "contacts": ("/contacts/export", "contacts", "updated_from", "updated_to"),
    "chats": ("/chats/export", "chats", "date_range_from", "date_range_to"),
}


@dataclass
class ExportPage:
    items: list[dict[str, Any]]
    exported: int
    total: int | None
    offset: int
    limit: int
    request_url: str

    @property
    def has_more(self) -> bool:
        return bool(self.items) and max(self.exported, len(self.items)) >= self.limit


def _date_param(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"message": response.text}


class B2ChatClient:
    """B2Chat API client.

    Usage:
        async with B2ChatClient() as client:
            page = await client.export_page("chats", offset=0, limit=100)
    """

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        limiter: RateLimitedQueue | None = None,
        retry_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.b2chat_api_url).rstrip("/")
        self.username = username if username is not None else settings.b2chat_username
        self.password = password if password is not None else settings.b2chat_password
        self.retry_attempts = retry_attempts if retry_attempts is not None else settings.b2chat_retry_attempts
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else settings.b2chat_retry_backoff_seconds
        )
        self.limiter = limiter or RateLimitedQueue()
        self._sleep = sleep
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.b2chat_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _authenticate(self) -> str:
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            if not self.username or not self.password:
                raise B2ChatAuthError("B2Chat credentials not configured", 401, endpoint="/oauth/token")

            try:
                response = await self._client.post(
                    "/oauth/token",
                    auth=(self.username, self.password),
                    data={"grant_type": "client_credentials"},
                )
            except httpx.TransportError as e:
                raise B2ChatTransientError(
                    f"Authentication request failed: {e}", endpoint="/oauth/token"
                ) from e

            if response.status_code != 200:
                error_cls = B2ChatAuthError if response.status_code in (400, 401, 403) else B2ChatAPIError
                raise error_cls(
                    "Authentication failed",
                    response.status_code,
                    _error_body(response),
                    endpoint="/oauth/token",
                    request_url=str(response.request.url),
                )

            data = response.json()
            expires_in = int(data.get("expires_in") or 0)
            self._access_token = data["access_token"]
            self._token_expires_at = (
                time.monotonic() + expires_in - settings.b2chat_token_refresh_margin_seconds
            )
            return self._access_token

    async def _request_once(self, method: str, path: str, params: dict | None) -> dict[str, Any]:
        token = await self._authenticate()
        await self.limiter.acquire()
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise B2ChatTransientError(f"Request timed out: {e}", endpoint=path) from e
        except httpx.TransportError as e:
            raise B2ChatTransientError(f"Connection error: {e}", endpoint=path) from e

        request_url = str(response.request.url)
        status = response.status_code

        if status in (401, 403):
            # Auth errors are not retried; dropping the token makes the next request re-authenticate.
            self._access_token = None
            raise B2ChatAuthError(
                "B2Chat API rejected the credentials", status, _error_body(response), path, request_url
            )
        if status == 429:
            raise B2ChatRateLimitError(
                "Rate limit exceeded", status, _error_body(response), path, request_url
            )
        if status >= 500:
            raise B2ChatTransientError(
                f"B2Chat API server error: {status}", status, _error_body(response), path, request_url
            )
        if status >= 400:
            body = _error_body(response)
            detail = body.get("message") or body.get("error") if isinstance(body, dict) else None
            raise B2ChatAPIError(
                f"B2Chat API request failed: {detail or status}", status, body, path, request_url
            )

        try:
            data = response.json()
        except ValueError as e:
            raise B2ChatPayloadError(
                "B2Chat API returned a non-JSON body", status, response.text[:2000], path, request_url
            ) from e
        if not isinstance(data, dict):
            raise B2ChatPayloadError(
                "B2Chat API returned an unexpected body", status, data, path, request_url
            )
        data["_request_url"] = request_url
        return data

    async def _request(self, method: str, path: str, params: dict | None = None) -> dict[str, Any]:
        """Make an API request, retrying transient failures with backoff."""
        attempt = 0
        while True:
            try:
                return await self._request_once(method, path, params)
            except B2ChatAPIError as e:
                if not e.is_retryable or attempt >= self.retry_attempts:
                    raise
                delay = self.retry_backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "B2Chat %s %s failed (%s), retry %d/%d in %.1fs",
                    method, path, e.status_code or e.message, attempt, self.retry_attempts, delay,
                )
                await self._sleep(delay)

    async def export_page(
        self,
        entity_type: str,
        *,
        offset: int,
        limit: int,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
    ) -> ExportPage:
        """Fetch one page from the contacts or chats export endpoint."""
        if entity_type not in EXPORT_ENDPOINTS:
            raise ValueError(f"Unsupported entity type: {entity_type}")
        path, key, from_param, to_param = EXPORT_ENDPOINTS[entity_type]

        params: dict[str, Any] = {"offset": offset, "limit": limit}
        if date_from is not None:
            params[from_param] = _date_param(date_from)
        if date_to is not None:
            params[to_param] = _date_param(date_to)

        data = await self._request("GET", path, params)
        request_url = data.pop("_request_url", path)
        items = data.get(key)
        if items is None:
            items = []
        if not isinstance(items, list):
            raise B2ChatPayloadError(
                f"Expected a list under '{key}'", 200, data, path, request_url
            )
        items = [item for item in items if isinstance(item, dict)]
        exported = data.get("exported")
        total = data.get("total")
        return ExportPage(
            items=items,
            exported=int(exported) if isinstance(exported, (int, float)) else len(items),
            total=int(total) if isinstance(total, (int, float)) else None,
            offset=offset,
            limit=limit,
            request_url=request_url,
        )

    async def export_contacts(self, *, offset: int = 0, limit: int = 100, **dates) -> ExportPage:
        return await self.export_page("contacts", offset=offset, limit=limit, **dates)

    async def export_chats(self, *, offset: int = 0, limit: int = 100, **dates) -> ExportPage:
        return await self.export_page("chats", offset=offset, limit=limit, **dates)
