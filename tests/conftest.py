"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Test configuration and shared fixtures for TestRelay.

Registers the pytest markers and provides fixtures for building endpoint
contexts and HTTP clients backed by ``httpx.MockTransport``.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

import testrelay.core.config as core_config
from testrelay.batch_executor import executor_factory
from testrelay.config_loader import EndpointContext
from testrelay.core.config import AppConfig, BatchConfig, init_app_config
from testrelay.dependency_graph import resolve_fetch_order
from testrelay.http_client import ApiClient
from testrelay.models import DEFAULT_ACTIONS, Direction, parse_integration_config

BASE_URL = "https://relay.example.com"

SAMPLE_JUNIT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites name="nightly">
  <testsuite name="LoginSuite" tests="3" failures="1" errors="0" skipped="1" time="1.5"
             file="tests/test_login.py">
    <testcase name="test_valid_login" classname="tests.test_login.LoginTests" time="0.5"/>
    <testcase name="test_bad_password" classname="tests.test_login.LoginTests" time="0.7">
      <failure message="expected 401" type="AssertionError">assert 200 == 401</failure>
    </testcase>
    <testcase name="test_sso" classname="tests.test_login.LoginTests" time="0.3">
      <skipped message="sso disabled"/>
    </testcase>
  </testsuite>
  <testsuite name="CartSuite" tests="1" failures="0" errors="1" skipped="0" time="2.0">
    <testcase name="test_checkout" classname="tests.test_cart.CartTests" time="2.0">
      <error message="timeout" type="TimeoutError"><![CDATA[gateway timed out]]></error>
      <system-out>checkout started</system-out>
    </testcase>
  </testsuite>
</testsuites>
"""


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark a test as a unit test")
    config.addinivalue_line("markers", "integration: mark a test as an integration test")
    config.addinivalue_line("markers", "slow: mark a test that takes longer than average to run")


@pytest.fixture(autouse=True)
def app_config():
    """Fresh application settings with no retry delay for every test."""
    config = init_app_config(
        AppConfig(batch=BatchConfig(retry_delay=0, retry_attempts=1, throttle_limit=1000))
    )
    yield config
    core_config._app_config = None


@pytest.fixture
def fast_batch_config() -> BatchConfig:
    return BatchConfig(
        concurrency_limit=4,
        throttle_limit=1000,
        batch_size=3,
        retry_attempts=1,
        retry_delay=0,
    )


@pytest.fixture
def fast_factory(fast_batch_config):
    """Executor factory without throttling delays."""
    return executor_factory(fast_batch_config, throttle_cap=1000, name="test")


@pytest.fixture
def api_config_data() -> dict[str, Any]:
    """A small API integration with a project -> suite -> case hierarchy."""
    return {
        "name": "tracker",
        "type": "api",
        "base_path": "/api/{workspace}",
        "auth": {"type": "bearer"},
        "requests_per_second": 100,
        "denormalized_keys": {"cases": {"projects": {"suites.id": "project_id"}}},
        "source": {
            "projects": {
                "endpoints": {
                    "index": {"path": "/projects", "data_key": "projects"},
                    "get": {"path": "/projects/{projects.id}"},
                },
                "mapping": {"id": "source_id"},
            },
            "suites": {
                "endpoints": {"index": {"path": "/projects/{projects.id}/suites"}},
                "mapping": {"id": "source_id"},
                "target_type": "folders",
            },
            "cases": {
                "endpoints": {
                    "index": {
                        "path": "/cases?project={projects.id}&suite={suites.id}",
                        "data_key": "cases",
                    },
                    "get": {"path": "/cases/{cases.id}"},
                },
                "mapping": {"id": "source_id", "title": "name"},
            },
        },
        "target": {
            "folders": {
                "endpoints": {"create": {"single_path": "/folders", "include_source": True}},
            },
            "cases": {
                "endpoints": {
                    "create": {"single_path": "/folders/{folder_id}/cases"},
                    "update": {
                        "path": "/cases/{case_id}",
                        "update_key": "case_id",
                        "required_keys": ["title"],
                    },
                },
                "mapping": {"name": "title"},
            },
            "executions": {
                "endpoints": {
                    "create": {"bulk_path": "/runs/{run_id}/results", "data_key": "entries"},
                },
            },
        },
    }


@pytest.fixture
def make_context(api_config_data) -> Callable[..., EndpointContext]:
    """Build an endpoint context without touching files or the environment."""

    def _make(
        direction: Direction = Direction.SOURCE,
        config_data: dict[str, Any] | None = None,
        **fields: Any,
    ) -> EndpointContext:
        config = parse_integration_config(config_data or api_config_data)
        direction = Direction(direction)
        fields.setdefault("base_url", BASE_URL)
        fields.setdefault("path_values", {"workspace": "qa"})
        fields.setdefault("throttle_cap", 1000)
        ctx = EndpointContext(direction=direction, integration=config.name, config=config, **fields)
        if "endpoint_set" not in fields and ctx.is_api:
            resources = config.resources(direction)
            supplied = set(ctx.path_values)
            if direction == Direction.TARGET:
                for overrides in ctx.overrides.values():
                    supplied |= set(overrides)
                supplied |= {"folder_id", "case_id", "run_id"}
            ctx.endpoint_set = resolve_fetch_order(
                resources, list(resources), DEFAULT_ACTIONS[direction], supplied
            )
        return ctx

    return _make


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], ApiClient]:
    """Wrap a request handler into an ApiClient backed by httpx.MockTransport."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> ApiClient:
        return ApiClient(transport=httpx.MockTransport(handler), **kwargs)

    return _make


@pytest.fixture
def junit_file(tmp_path: Path) -> Path:
    path = tmp_path / "results.xml"
    path.write_text(SAMPLE_JUNIT_XML, encoding="utf-8")
    return path


@pytest.fixture
def write_json(tmp_path: Path) -> Callable[[str, Any], Path]:
    def _write(name: str, data: Any) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
