"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for the command line interface.
"""

import json

import httpx
import pytest
from typer.testing import CliRunner

from testrelay import __version__
from testrelay.cli import app
from testrelay.http_client import ApiClient
from testrelay.orchestrator import MigrationPipeline

pytestmark = pytest.mark.unit

runner = CliRunner()


@pytest.fixture
def tracker_files(tmp_path, api_config_data):
    config = tmp_path / "tracker.json"
    config.write_text(json.dumps(api_config_data))
    credentials = tmp_path / "credentials.json"
    credentials.write_text(
        json.dumps(
            {
                "tracker": {
                    "target": {"base_url": "https://relay.example.com", "workspace": "qa", "token": "t0k3n"}
                }
            }
        )
    )
    return config, credentials


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"TestRelay version: {__version__}" in result.stdout


def test_parse_report(junit_file, tmp_path):
    output = tmp_path / "parsed.json"
    result = runner.invoke(
        app,
        [
            "parse-report",
            str(junit_file),
            "--run-id",
            "r1",
            "--status-map",
            "testrail",
            "--output",
            str(output),
        ],
    )

    assert result.exit_code == 0, result.stdout
    assert "Run r1: 4 test cases, 4 executions" in result.stdout
    assert "LoginSuite" in result.stdout
    assert isinstance(json.loads(output.read_text()), dict)


def test_parse_report_rejects_unknown_status_map(junit_file):
    result = runner.invoke(app, ["parse-report", str(junit_file), "--status-map", "xray"])
    assert result.exit_code == 1
    assert "unknown status map" in result.stdout


def test_parse_report_missing_file(tmp_path):
    result = runner.invoke(app, ["parse-report", str(tmp_path / "missing.xml")])
    assert result.exit_code == 1
    assert "Results file not found" in result.stdout


def test_fetch_order_of_packaged_config():
    result = runner.invoke(app, ["fetch-order", "testrail"])
    assert result.exit_code == 0, result.stdout
    for resource in ("projects", "suites", "cases"):
        assert resource in result.stdout


def test_fetch_order_of_file_source():
    result = runner.invoke(app, ["fetch-order", "junit:results.xml"])
    assert result.exit_code == 0
    assert "is a junit file and has no endpoints" in result.stdout


def test_migrate_reports_configuration_errors():
    result = runner.invoke(app, ["migrate", "--source", "nope", "--target", "testrail"])
    assert result.exit_code == 1
    assert "Integration config not found: nope" in result.stdout


def test_migrate_report_to_tracker(monkeypatch, junit_file, tracker_files, tmp_path):
    config, credentials = tracker_files
    summary_file = tmp_path / "summary.json"
    paths = []

    def handler(request):
        paths.append(request.url.path)
        assert request.headers["Authorization"] == "Bearer t0k3n"
        return httpx.Response(201, json={})

    monkeypatch.setattr(
        MigrationPipeline,
        "_default_client",
        lambda self, ctx: ApiClient(auth=ctx.auth, transport=httpx.MockTransport(handler)),
    )

    result = runner.invoke(
        app,
        [
            "migrate",
            "--source",
            f"junit:{junit_file}",
            "--target",
            str(config),
            "--credentials",
            str(credentials),
            "--overrides",
            json.dumps({"cases": {"folder_id": 3}, "executions": {"run_id": 9}}),
            "--no-git",
            "--summary-file",
            str(summary_file),
        ],
    )

    assert result.exit_code == 0, result.stdout
    assert "Migration completed" in result.stdout
    assert paths.count("/api/qa/folders/3/cases") == 4
    summary = json.loads(summary_file.read_text())
    assert summary["success"] is True
    assert summary["targets"]["tracker"]["sent"] == 7
    assert "Pull Summary" in result.stdout


def test_migrate_exits_nonzero_when_pulls_fail(monkeypatch, tmp_path, tracker_files):
    config, _ = tracker_files
    login = {"base_url": "https://relay.example.com", "workspace": "qa", "token": "expired"}
    credentials = tmp_path / "both.json"
    credentials.write_text(json.dumps({"tracker": {"source": login, "target": login}}))
    summary_file = tmp_path / "summary.json"

    monkeypatch.setattr(
        MigrationPipeline,
        "_default_client",
        lambda self, ctx: ApiClient(
            auth=ctx.auth, transport=httpx.MockTransport(lambda request: httpx.Response(401))
        ),
    )

    result = runner.invoke(
        app,
        [
            "migrate",
            "--source",
            str(config),
            "--target",
            str(config),
            "--credentials",
            str(credentials),
            "--no-git",
            "--summary-file",
            str(summary_file),
        ],
    )

    assert result.exit_code == 1
    assert "Pull Summary" in result.stdout
    assert "Migration finished with failures" in result.stdout
    summary = json.loads(summary_file.read_text())
    assert summary["success"] is False
    assert summary["sources"]["tracker"]["failed_requests"] == 1
