"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Asynchronous HTTP client for integration endpoints.

Wraps ``httpx.AsyncClient`` with the integration's auth, a per-request
timeout and the TestRelay error taxonomy. Retrying is not done here; the
batch executor owns the retry policy.
"""

import json
import logging
import time
from typing import Any

import httpx

from testrelay.auth import AuthOptions
from testrelay.core.logging import get_logger
from testrelay.exceptions import (
    AuthenticationError,
    DataError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
)

logger = get_logger("testrelay.http_client")

DEFAULT_TIMEOUT = 30.0


def _error_for_status(response: httpx.Response, method: str) -> NetworkError | AuthenticationError:
    status = response.status_code
    url = str(response.request.url)
    body = response.text[:500]
    message = f"{method} {url} failed with status {status}: {body}"

    if status in (401, 403):
        return AuthenticationError(message, context={"url": url, "status_code": status})
    if status == 429:
        return RateLimitError(message, url=url, status_code=status)
    if status == 408:
        return RequestTimeoutError(message, url=url, status_code=status)
    return NetworkError(message, url=url, status_code=status, retryable=status >= 500)


class ApiClient:
    """
    Client for one integration's REST endpoints.

    Args:
        base_url: Prefix for relative request URLs; absolute URLs are sent as given
        auth: Resolved auth applied to every request, if any
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport, used by tests to fake the service
        headers: Extra headers sent with every request
    """

    def __init__(
        self,
        base_url: str = "",
        auth: AuthOptions | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url
        self.auth = auth
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Accept": "application/json", **(headers or {})}
        self._client: httpx.AsyncClient | None = None
        self.request_count = 0
        self.total_request_time = 0.0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self.transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        url: str,
        json_body: Any = None,
        files: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send a request and return the decoded response body.

        JSON responses are decoded; empty bodies return ``None``; anything else
        is returned as text.

        Raises:
            AuthenticationError: On 401 and 403 responses.
            RateLimitError: On 429 responses.
            RequestTimeoutError: When the request times out.
            NetworkError: On other non-2xx statuses and transport failures.
            DataError: When a JSON response body cannot be decoded.
        """
        headers = dict(self.headers)
        params = dict(params or {})
        if isinstance(json_body, dict):
            json_body = dict(json_body)
        if self.auth is not None:
            self.auth.apply(headers, params, json_body)

        self.request_count += 1
        request_number = self.request_count
        logger.debug(f"API Request #{request_number}: {method} {url}")
        if logger.isEnabledFor(logging.DEBUG) and json_body is not None:
            logger.debug(f"Request Body: {json.dumps(json_body, default=str)[:2000]}")

        start_time = time.monotonic()
        try:
            if files:
                # Multipart requests carry auth-in-body fields as form data
                form = json_body if isinstance(json_body, dict) else None
                response = await self.client.request(
                    method, url, headers=headers, params=params or None, files=files, data=form
                )
            else:
                response = await self.client.request(
                    method, url, headers=headers, params=params or None, json=json_body
                )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"{method} {url} timed out after {self.timeout}s", url=url
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}", url=url) from e
        finally:
            self.total_request_time += time.monotonic() - start_time

        if response.is_error:
            raise _error_for_status(response, method)

        logger.debug(
            f"API Response #{request_number}: {response.status_code} from {method} {url}",
        )
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError as e:
                raise DataError(
                    f"{method} {url} returned invalid JSON: {e}",
                    context={"url": str(response.request.url), "status_code": response.status_code},
                ) from e
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json_body: Any = None, files: dict[str, Any] | None = None) -> Any:
        return await self.request("POST", url, json_body=json_body, files=files)

    async def put(self, url: str, json_body: Any = None) -> Any:
        return await self.request("PUT", url, json_body=json_body)

    async def patch(self, url: str, json_body: Any = None) -> Any:
        return await self.request("PATCH", url, json_body=json_body)

    async def delete(self, url: str) -> Any:
        return await self.request("DELETE", url)
