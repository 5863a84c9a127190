"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for request authentication schemes.
"""

import pytest

from testrelay.auth import AUTH_SCHEMAS, build_auth_options
from testrelay.exceptions import AuthenticationError
from testrelay.models import AuthConfig, AuthLocation

pytestmark = pytest.mark.unit


def test_supported_schemes():
    assert set(AUTH_SCHEMAS) == {"basic", "bearer"}


def test_basic_auth_header():
    options = build_auth_options("basic", {"base64Credentials": "dXNlcjpwYXNz"})
    headers, params = {}, {}
    options.apply(headers, params)
    assert headers == {"Authorization": "Basic dXNlcjpwYXNz"}
    assert params == {}


def test_bearer_auth_header():
    options = build_auth_options(AuthConfig(type="bearer"), {"token": "abc123"})
    assert options.location == AuthLocation.HEADER
    assert options.payload == "Bearer abc123"


def test_query_location_override():
    config = AuthConfig(type="bearer", location="query", key="api_key", payload="{token}")
    options = build_auth_options(config, {"token": "abc123"})
    headers, params = {}, {}
    options.apply(headers, params)
    assert params == {"api_key": "abc123"}
    assert headers == {}


def test_body_location():
    options = build_auth_options(AuthConfig(type="bearer", location="body", key="token"), {"token": "t"})
    body = {"name": "x"}
    options.apply({}, {}, body)
    assert body == {"name": "x", "token": "Bearer t"}


def test_unknown_type():
    with pytest.raises(AuthenticationError, match="Invalid auth type"):
        build_auth_options("oauth", {})


def test_missing_input():
    with pytest.raises(AuthenticationError, match="base64Credentials"):
        build_auth_options("basic", {"token": "x"})


def test_payload_with_unknown_input():
    config = AuthConfig(type="bearer", payload="Token {secret}")
    with pytest.raises(AuthenticationError, match="secret"):
        build_auth_options(config, {"token": "x"})


def test_repr_hides_payload():
    options = build_auth_options("bearer", {"token": "abc123"})
    assert "abc123" not in repr(options)
