"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Conversion of a parsed report into canonical collections.

Targets receive the same resource names whichever source produced them:
``folders`` for suites, ``cases``, ``runs`` and ``executions``.
"""

from typing import Any

from testrelay.report_models import ParseResult, Suite, TestCase

CanonicalData = dict[str, list[dict[str, Any]]]


def _folder_record(suite: Suite, source: str) -> dict[str, Any]:
    return {
        "external_id": suite.external_id,
        "source_id": suite.external_id,
        "name": suite.name,
        "source": source,
        "parent_external_id": suite.parent_external_id,
        "tests": suite.tests,
        "failures": suite.failures,
        "errors": suite.errors,
        "skipped": suite.skipped,
        "time": suite.time,
        "timestamp": suite.timestamp,
        "file": suite.file,
    }


def _case_record(case: TestCase, status: Any, source: str) -> dict[str, Any]:
    return {
        "external_id": case.external_id,
        "source_id": case.external_id,
        "name": case.name,
        "classname": case.classname,
        "folder_external_id": case.folder_external_id,
        "time": case.time,
        "status": status,
        "source": source,
        "tags": [case.classname.rsplit(".", 1)[-1] or "test"],
    }


def _execution_comment(case: TestCase) -> str:
    outcome = case.failure or case.error or case.skipped
    if outcome is None:
        return ""
    return outcome.message or ""


def to_canonical(result: ParseResult, source: str = "junit-xml") -> CanonicalData:
    """
    Build the canonical ``folders``/``cases``/``runs``/``executions`` collections.

    Ids are the content-derived ids assigned by the parser, so pushing the same
    report twice addresses the same target records.
    """
    root = result.root
    run = {
        "external_id": result.run.external_id,
        "source_id": result.run.external_id,
        "name": result.run.name,
        "source": source,
        "total_tests": root.tests if root else 0,
        "total_failures": root.failures if root else 0,
        "total_errors": root.errors if root else 0,
        "total_skipped": root.skipped if root else 0,
        "total_time": root.time if root else 0.0,
    }

    cases = []
    executions = []
    for case, execution in zip(result.testcases, result.executions, strict=True):
        cases.append(_case_record(case, execution.status, source))
        outcome = case.failure or case.error
        executions.append(
            {
                "external_id": execution.external_id,
                "source_id": execution.external_id,
                "case_ref": execution.case_ref,
                "run_ref": execution.run_ref,
                "status": execution.status,
                "duration": execution.duration,
                "source": source,
                "comment": _execution_comment(case),
                "failure_type": (outcome.type or "") if outcome else "",
                "failure_details": (outcome.text or "") if outcome else "",
            }
        )

    return {
        "folders": [_folder_record(suite, source) for suite in result.suites],
        "cases": cases,
        "runs": [run],
        "executions": executions,
    }
