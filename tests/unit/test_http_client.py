"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the asynchronous API client.
"""

import json

import httpx
import pytest

from testrelay.auth import build_auth_options
from testrelay.exceptions import (
    AuthenticationError,
    DataError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
)
from testrelay.http_client import ApiClient
from testrelay.models import AuthConfig

pytestmark = pytest.mark.unit

URL = "https://relay.example.com/api/items"


class Recorder:
    """Request handler that records requests and returns a fixed response."""

    def __init__(self, response: httpx.Response | None = None):
        self.response = response or httpx.Response(200, json={"ok": True})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.mark.asyncio
async def test_get_decodes_json(mock_client):
    handler = Recorder(httpx.Response(200, json={"items": [1, 2]}))
    async with mock_client(handler) as client:
        assert await client.get(URL, params={"page": 2}) == {"items": [1, 2]}
    assert handler.requests[0].url.params["page"] == "2"
    assert client.request_count == 1


@pytest.mark.asyncio
async def test_post_sends_json_body(mock_client):
    handler = Recorder(httpx.Response(201, json={"id": 7}))
    client = mock_client(handler)
    assert await client.post(URL, json_body={"name": "Login"}) == {"id": 7}
    assert json.loads(handler.requests[0].content) == {"name": "Login"}
    assert handler.requests[0].method == "POST"
    await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["put", "patch"])
async def test_other_verbs(mock_client, method):
    handler = Recorder()
    client = mock_client(handler)
    await getattr(client, method)(URL, json_body={"a": 1})
    assert handler.requests[0].method == method.upper()
    await client.close()


@pytest.mark.asyncio
async def test_empty_and_text_responses(mock_client):
    client = mock_client(Recorder(httpx.Response(204)))
    assert await client.delete(URL) is None
    await client.close()

    client = mock_client(Recorder(httpx.Response(200, text="plain text")))
    assert await client.get(URL) == "plain text"
    await client.close()


@pytest.mark.asyncio
async def test_invalid_json_body(mock_client):
    response = httpx.Response(200, content=b'{"id": 1', headers={"content-type": "application/json"})
    client = mock_client(Recorder(response))
    with pytest.raises(DataError) as exc_info:
        await client.get(URL)
    assert not exc_info.value.retryable
    assert exc_info.value.context["status_code"] == 200
    assert isinstance(exc_info.value.__cause__, ValueError)
    await client.close()


@pytest.mark.asyncio
async def test_auth_header_is_applied(mock_client):
    handler = Recorder()
    auth = build_auth_options("bearer", {"token": "abc"})
    client = mock_client(handler, auth=auth)
    await client.get(URL)
    assert handler.requests[0].headers["Authorization"] == "Bearer abc"
    await client.close()


@pytest.mark.asyncio
async def test_auth_in_body_does_not_modify_caller_body(mock_client):
    handler = Recorder()
    auth = build_auth_options(AuthConfig(type="bearer", location="body", key="token"), {"token": "t"})
    client = mock_client(handler, auth=auth)
    body = {"name": "x"}
    await client.post(URL, json_body=body)
    assert json.loads(handler.requests[0].content) == {"name": "x", "token": "Bearer t"}
    assert body == {"name": "x"}
    await client.close()


@pytest.mark.asyncio
async def test_multipart_upload(mock_client):
    handler = Recorder()
    client = mock_client(handler)
    await client.post(URL, files={"file": ("report.xml", b"<testsuite/>")})
    request = handler.requests[0]
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b"report.xml" in request.content
    await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_class,retryable",
    [
        (401, AuthenticationError, False),
        (403, AuthenticationError, False),
        (408, RequestTimeoutError, True),
        (429, RateLimitError, True),
        (500, NetworkError, True),
        (404, NetworkError, False),
    ],
)
async def test_error_statuses(mock_client, status, error_class, retryable):
    client = mock_client(Recorder(httpx.Response(status, text="nope")))
    with pytest.raises(error_class) as exc_info:
        await client.get(URL)
    assert type(exc_info.value) is error_class
    assert exc_info.value.retryable is retryable
    assert exc_info.value.context["status_code"] == status
    await client.close()


@pytest.mark.asyncio
async def test_timeout(mock_client):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = mock_client(handler)
    with pytest.raises(RequestTimeoutError):
        await client.get(URL)
    await client.close()


@pytest.mark.asyncio
async def test_connection_failure(mock_client):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = mock_client(handler)
    with pytest.raises(NetworkError) as exc_info:
        await client.get(URL)
    assert type(exc_info.value) is NetworkError
    assert exc_info.value.retryable
    await client.close()


@pytest.mark.asyncio
async def test_client_is_recreated_after_close():
    client = ApiClient(transport=httpx.MockTransport(Recorder()))
    first = client.client
    await client.close()
    assert client.client is not first
    await client.close()
