"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Entities produced by parsing a test report.

A parse pass yields suites, the cases inside them, one execution per case and
a single synthetic run. Entities are plain dataclasses handed read-only to the
rest of the pipeline; only the root aggregate counters change while suites are
visited.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class TestStatus(str, Enum):
    """Native outcome vocabulary of a parsed test case."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    BLOCKED = "blocked"
    SKIPPED = "skipped"
    UNTESTED = "untested"


StatusMap = dict[str, Any]

NATIVE_STATUS_MAP: StatusMap = {status.value: status.value for status in TestStatus}

# TestRail result ids: 1 passed, 2 blocked, 3 untested, 4 retest, 5 failed
TESTRAIL_STATUS_MAP: StatusMap = {
    TestStatus.PASSED.value: 1,
    TestStatus.BLOCKED.value: 2,
    TestStatus.UNTESTED.value: 3,
    TestStatus.SKIPPED.value: 4,
    TestStatus.FAILED.value: 5,
    TestStatus.ERROR.value: 5,
}

STATUS_MAPS: dict[str, StatusMap] = {
    "native": NATIVE_STATUS_MAP,
    "testrail": TESTRAIL_STATUS_MAP,
}

DEFAULT_KEY_MAP = {"suites": "root", "suite": "section", "testcase": "testcase"}

SOURCE_NAME = "junit-xml"


@dataclass(frozen=True)
class Outcome:
    """Details of a failure, error, blocked or skipped marker."""

    message: str | None = None
    type: str | None = None
    text: str | None = None


@dataclass
class RootSuite:
    """Totals summed over the top-level suites of a report."""

    name: str = "root"
    tests: int = 0
    errors: int = 0
    failures: int = 0
    skipped: int = 0
    time: float = 0.0

    def add(self, suite: "Suite") -> None:
        self.tests += suite.tests
        self.errors += suite.errors
        self.failures += suite.failures
        self.skipped += suite.skipped
        self.time += suite.time


@dataclass
class Suite:
    name: str
    external_id: str
    tests: int = 0
    errors: int = 0
    failures: int = 0
    skipped: int = 0
    time: float = 0.0
    file: str | None = None
    timestamp: str | None = None
    parent_external_id: str | None = None
    source: str = SOURCE_NAME
    testcases: list["TestCase"] = field(default_factory=list)


@dataclass
class TestCase:
    """
    One test case of a report.

    At most one of ``failure``, ``error`` and ``skipped`` is set; none set
    means the case passed. ``system_out`` and ``system_err`` are ``None``
    when the element is absent and ``""`` when it is present but empty.
    """

    __test__ = False

    name: str
    classname: str
    external_id: str
    folder_external_id: str
    time: float = 0.0
    failure: Outcome | None = None
    error: Outcome | None = None
    skipped: Outcome | None = None
    system_out: str | None = None
    system_err: str | None = None
    source: str = SOURCE_NAME


@dataclass(frozen=True)
class Execution:
    """The result of one case running once in the synthetic run."""

    external_id: str
    case_ref: str
    run_ref: str
    status: Any
    duration: float = 0.0
    source: str = SOURCE_NAME


@dataclass(frozen=True)
class Run:
    external_id: str
    name: str
    source: str = SOURCE_NAME


@dataclass
class ParseResult:
    """Everything a single report parse produced."""

    root: RootSuite | None
    suites: list[Suite]
    testcases: list[TestCase]
    executions: list[Execution]
    run: Run

    @property
    def run_id(self) -> str:
        return self.run.external_id

    def to_dict(self, key_map: dict[str, str] | None = None) -> dict[str, Any]:
        """
        Render the result with the report-level key names (``root``, ``section``, ``testcase``).
        """
        keys = {**DEFAULT_KEY_MAP, **(key_map or {})}
        suites = []
        for suite in self.suites:
            data = asdict(suite)
            data.pop("testcases")
            suites.append(data)
        return {
            keys["suites"]: asdict(self.root) if self.root is not None else {},
            keys["suite"]: suites,
            keys["testcase"]: [asdict(case) for case in self.testcases],
            "executions": [asdict(execution) for execution in self.executions],
            "run_id": self.run_id,
        }
