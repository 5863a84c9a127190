"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for pulling records from API and file sources.
"""

import copy

import httpx
import pytest

from testrelay.error_manager import ErrorManager
from testrelay.exceptions import ConfigurationError, DataError, NetworkError
from testrelay.extractor import Extractor, JsonSource, JUnitSource, create_source
from testrelay.models import Direction

pytestmark = pytest.mark.unit

ROUTES = {
    ("/api/qa/projects", ""): {"projects": [{"id": 1, "name": "Web"}, {"id": 2, "name": "Mobile"}]},
    ("/api/qa/projects/1", ""): {"id": 1, "name": "Web"},
    ("/api/qa/projects/1/suites", ""): [{"id": 10, "project_id": 1, "name": "Smoke"}],
    ("/api/qa/projects/2/suites", ""): [{"id": 20, "project_id": 2, "name": "Regression"}],
    ("/api/qa/cases", "project=1&suite=10"): {
        "cases": [{"id": 100, "title": "Login"}, {"id": 101, "title": "[DRAFT] Logout"}]
    },
    ("/api/qa/cases", "project=2&suite=20"): {"cases": [{"id": 200, "title": "Checkout"}]},
}


class FakeService:
    """Routes requests to canned payloads; listed paths answer 500."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        query = request.url.query.decode()
        if f"{request.url.path}?{query}" in self.failing:
            return httpx.Response(500, text="server error")
        payload = ROUTES.get((request.url.path, query))
        if payload is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json=payload)


@pytest.fixture
def source_ctx(make_context):
    return make_context(Direction.SOURCE)


class TestExtractor:
    @pytest.mark.asyncio
    async def test_pulls_in_fetch_order(self, source_ctx, mock_client, fast_factory):
        service = FakeService()
        extractor = Extractor(source_ctx, mock_client(service), executor_factory=fast_factory)

        data = await extractor.pull()

        assert data["source"] == "tracker"
        assert data["projects"] == [{"source_id": 1, "name": "Web"}, {"source_id": 2, "name": "Mobile"}]
        assert [suite["source_id"] for suite in data["folders"]] == [10, 20]
        assert [case["name"] for case in data["cases"]] == ["Login", "[DRAFT] Logout", "Checkout"]
        assert "suites" not in data
        assert extractor.stats.requests == 5
        assert extractor.stats.records_by_collection == {"projects": 2, "folders": 2, "cases": 3}

    @pytest.mark.asyncio
    async def test_ignore_rules_veto_records(self, make_context, mock_client, fast_factory):
        ctx = make_context(Direction.SOURCE, ignore_config={"cases": {"title": ["^\\[DRAFT\\]"]}})
        extractor = Extractor(ctx, mock_client(FakeService()), executor_factory=fast_factory)

        data = await extractor.pull()

        assert [case["name"] for case in data["cases"]] == ["Login", "Checkout"]
        assert extractor.stats.ignored_records == 1

    @pytest.mark.asyncio
    async def test_failed_requests_contribute_nothing(self, source_ctx, mock_client, fast_factory):
        service = FakeService(failing={"/api/qa/cases?project=2&suite=20"})
        extractor = Extractor(source_ctx, mock_client(service), executor_factory=fast_factory)

        data = await extractor.pull()

        assert [case["source_id"] for case in data["cases"]] == [100, 101]
        assert extractor.stats.failed_requests == 1
        assert extractor.stats.failed_urls == ["https://relay.example.com/api/qa/cases?project=2&suite=20"]
        # One retry after the first failure
        failing = [r for r in service.requests if r.url.query == b"project=2&suite=20"]
        assert len(failing) == 2

    @pytest.mark.asyncio
    async def test_failed_requests_are_recorded(self, source_ctx, mock_client, fast_factory):
        errors = ErrorManager()
        service = FakeService(failing={"/api/qa/cases?project=2&suite=20"})
        extractor = Extractor(
            source_ctx, mock_client(service), executor_factory=fast_factory, error_manager=errors
        )

        await extractor.pull()

        (error,) = errors.errors
        assert isinstance(error, NetworkError)
        assert error.status_code == 500
        assert error.context["resource"] == "cases"
        assert error.context["url"] == "https://relay.example.com/api/qa/cases?project=2&suite=20"

    @pytest.mark.asyncio
    async def test_empty_prerequisite_skips_dependents(self, source_ctx, mock_client, fast_factory):
        def handler(request):
            return httpx.Response(200, json={"projects": []})

        extractor = Extractor(source_ctx, mock_client(handler), executor_factory=fast_factory)
        data = await extractor.pull()

        assert data["projects"] == []
        assert data["folders"] == []
        assert data["cases"] == []
        assert extractor.stats.requests == 1

    @pytest.mark.asyncio
    async def test_id_targeted_pull(self, source_ctx, mock_client, fast_factory):
        service = FakeService()
        extractor = Extractor(source_ctx, mock_client(service), executor_factory=fast_factory)

        data = await extractor.pull(ids={"projects": [{"id": 1}]})

        assert data == {"source": "tracker", "projects": [{"source_id": 1, "name": "Web"}]}
        assert [r.url.path for r in service.requests] == ["/api/qa/projects/1"]

    @pytest.mark.asyncio
    async def test_fresh_executor_per_resource_with_endpoint_throttle(
        self, make_context, api_config_data, mock_client, fast_factory
    ):
        data = copy.deepcopy(api_config_data)
        data["source"]["suites"]["endpoints"]["index"]["throttle"] = 1
        ctx = make_context(Direction.SOURCE, config_data=data)
        limits = []

        def factory(limit=None):
            limits.append(limit)
            return fast_factory(limit)

        await Extractor(ctx, mock_client(FakeService()), executor_factory=factory).pull()
        assert limits == [None, 1, None]

    @pytest.mark.asyncio
    async def test_progress_callback(self, source_ctx, mock_client, fast_factory):
        progress = []
        extractor = Extractor(
            source_ctx,
            mock_client(FakeService()),
            executor_factory=fast_factory,
            progress_callback=lambda resource, done, total: progress.append((resource, done, total)),
        )
        await extractor.pull()
        assert ("projects", 1, 1) in progress
        assert ("cases", 2, 2) in progress

    def test_requires_api_source(self, make_context, junit_file):
        ctx = make_context(config_data={"name": "junit", "type": "junit", "file_path": str(junit_file)})
        with pytest.raises(ConfigurationError):
            Extractor(ctx, client=None)


class TestFileSources:
    @pytest.fixture
    def junit_ctx(self, make_context, junit_file):
        def _make(**fields):
            return make_context(
                config_data={"name": "ci", "type": "junit", "file_path": str(junit_file)}, **fields
            )

        return _make

    @pytest.mark.asyncio
    async def test_junit_source(self, junit_ctx):
        source = JUnitSource(junit_ctx(), run_id="run1", status_map="testrail")
        data = await source.pull()

        assert data["source"] == "ci"
        assert [run["external_id"] for run in data["runs"]] == ["run1"]
        assert [e["status"] for e in data["executions"]] == [1, 5, 4, 5]
        assert all(case["source"] == "ci" for case in data["cases"])
        assert source.stats.records_by_collection["cases"] == 4

    @pytest.mark.asyncio
    async def test_junit_source_applies_ignores(self, junit_ctx):
        source = JUnitSource(junit_ctx(ignore_config={"cases": {"name": ["sso"]}}))
        data = await source.pull()
        assert len(data["cases"]) == 3
        assert source.stats.ignored_records == 1

    def test_unknown_status_map(self, junit_ctx):
        with pytest.raises(ConfigurationError, match="status map"):
            JUnitSource(junit_ctx(), status_map="xray")

    @pytest.mark.asyncio
    async def test_json_source(self, make_context, write_json):
        path = write_json(
            "dump.json", {"source": "legacy", "cases": [{"id": 1}, "noise"], "notes": "not a list"}
        )
        ctx = make_context(config_data={"name": "dump", "type": "json", "file_path": str(path)})
        data = await JsonSource(ctx).pull()
        assert data == {"source": "legacy", "cases": [{"id": 1}]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["[1, 2]", "{broken"])
    async def test_json_source_rejects_bad_content(self, make_context, tmp_path, content):
        path = tmp_path / "dump.json"
        path.write_text(content)
        ctx = make_context(config_data={"name": "dump", "type": "json", "file_path": str(path)})
        with pytest.raises(DataError):
            await JsonSource(ctx).pull()

    @pytest.mark.asyncio
    async def test_file_source_needs_a_path(self, make_context):
        ctx = make_context(config_data={"name": "dump", "type": "json"})
        with pytest.raises(ConfigurationError, match="file_path"):
            await JsonSource(ctx).pull()


class TestCreateSource:
    def test_picks_implementation(self, make_context, junit_file, mock_client):
        junit = make_context(config_data={"name": "ci", "type": "junit", "file_path": str(junit_file)})
        assert isinstance(create_source(junit), JUnitSource)

        api = make_context(Direction.SOURCE)
        assert isinstance(create_source(api, client=mock_client(FakeService())), Extractor)
        with pytest.raises(ConfigurationError, match="HTTP client"):
            create_source(api)
