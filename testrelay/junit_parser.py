"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
JUnit XML report parser.

The parser moves through ``UNPARSED -> PARSED -> ROOT_AGGREGATED -> BUILT``.
Reports come in two shapes, a bare ``<testsuite>`` or a ``<testsuites>``
collection; the shape is resolved once when the document is parsed and both
are visited the same way afterwards.
"""

import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from testrelay.exceptions import ReportInputError
from testrelay.external_id import (
    TestCaseIdentity,
    TestSuiteIdentity,
    generate_run_specific_test_case_id,
    generate_test_case_id,
    generate_test_suite_id,
)
from testrelay.report_models import (
    DEFAULT_KEY_MAP,
    NATIVE_STATUS_MAP,
    Execution,
    Outcome,
    ParseResult,
    RootSuite,
    Run,
    StatusMap,
    Suite,
    TestCase,
    TestStatus,
)

DEFAULT_RUN_NAME = "JUnit Run"


class ParseState(IntEnum):
    UNPARSED = 0
    PARSED = 1
    ROOT_AGGREGATED = 2
    BUILT = 3


@dataclass(frozen=True)
class SingleSuite:
    """A report whose document element is one ``<testsuite>``."""

    suite: ET.Element


@dataclass(frozen=True)
class SuiteCollection:
    """A report whose document element is ``<testsuites>``."""

    container: ET.Element


@dataclass(frozen=True)
class EmptyReport:
    """A well-formed document with no recognizable suites."""

    tag: str


ReportShape = SingleSuite | SuiteCollection | EmptyReport


def resolve_shape(document: ET.Element) -> ReportShape:
    if document.tag == "testsuite":
        return SingleSuite(document)
    if document.tag == "testsuites":
        return SuiteCollection(document)
    return EmptyReport(document.tag)


def _int_attr(element: ET.Element, name: str) -> int:
    value = element.get(name)
    if not value:
        return 0
    try:
        return int(float(value))
    except ValueError:
        return 0


def _float_attr(element: ET.Element, name: str) -> float:
    value = element.get(name)
    if not value:
        return 0.0
    try:
        return float(value.replace(",", ""))
    except ValueError:
        return 0.0


def _text(element: ET.Element) -> str:
    # CDATA sections arrive as ordinary text
    return "".join(element.itertext())


def _outcome(element: ET.Element | None) -> Outcome | None:
    if element is None:
        return None
    return Outcome(
        message=element.get("message"),
        type=element.get("type"),
        text=_text(element) or None,
    )


class JUnitXmlParser:
    """
    Parse a JUnit XML report into suites, cases, executions and a run.

    Args:
        status_map: Maps native statuses (``passed``, ``failed`` ...) to the
            values written on executions, e.g. TestRail's numeric ids
        run_id: Shared run identity; a fresh one is generated when omitted
        key_map: Key names used by :meth:`ParseResult.to_dict`
    """

    def __init__(
        self,
        status_map: StatusMap | None = None,
        run_id: str | None = None,
        key_map: dict[str, str] | None = None,
    ):
        self.status_map: StatusMap = {**NATIVE_STATUS_MAP, **(status_map or {})}
        self.run_id = run_id or uuid.uuid4().hex
        self.key_map = {**DEFAULT_KEY_MAP, **(key_map or {})}
        self.state = ParseState.UNPARSED
        self._xml = ""
        self._reset()

    def _reset(self) -> None:
        self._shape: ReportShape | None = None
        self._root: RootSuite | None = None
        self._suites: list[Suite] = []
        self._cases: list[TestCase] = []
        self._executions: list[Execution] = []
        self._result: ParseResult | None = None
        self.state = ParseState.UNPARSED

    def from_xml(self, xml: str) -> "JUnitXmlParser":
        self._reset()
        self._xml = xml
        return self

    def from_file(self, file_path: str | Path) -> "JUnitXmlParser":
        """
        Load report content from a file.

        Raises:
            ReportInputError: If the path is empty, missing or unreadable.
        """
        if not file_path or not str(file_path).strip():
            raise ReportInputError("File path cannot be empty")

        path = Path(file_path).expanduser().resolve()
        if not path.is_file():
            raise ReportInputError(f"Results file not found: {path}", context={"path": str(path)})

        try:
            xml = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ReportInputError(f"Failed to read file: {e}", context={"path": str(path)}) from e
        return self.from_xml(xml)

    def _parse(self) -> None:
        if not self._xml or not self._xml.strip():
            raise ReportInputError("Cannot parse empty XML")
        try:
            document = ET.fromstring(self._xml)
        except ET.ParseError as e:
            raise ReportInputError(f"Invalid report XML: {e}") from e
        self._shape = resolve_shape(document)
        self.state = ParseState.PARSED

    def _apply_root_suite(self) -> None:
        shape = self._shape
        if isinstance(shape, SingleSuite):
            self._root = RootSuite()
            top_level = [shape.suite]
        elif isinstance(shape, SuiteCollection):
            self._root = RootSuite()
            top_level = shape.container.findall("testsuite")
        else:
            self._root = None
            top_level = []

        for element in top_level:
            suite = self._visit_suite(element, parent=None)
            self._root.add(suite)
        self.state = ParseState.ROOT_AGGREGATED

    def _visit_suite(self, element: ET.Element, parent: Suite | None) -> Suite:
        name = element.get("name", "")
        file = element.get("file") or (parent.file if parent else None)
        suite = Suite(
            name=name,
            external_id=generate_test_suite_id(TestSuiteIdentity(name=name, file=file)),
            tests=_int_attr(element, "tests"),
            errors=_int_attr(element, "errors"),
            failures=_int_attr(element, "failures"),
            skipped=_int_attr(element, "skipped"),
            time=_float_attr(element, "time"),
            file=file,
            timestamp=element.get("timestamp"),
            parent_external_id=parent.external_id if parent else None,
        )
        self._suites.append(suite)

        for child in element:
            if child.tag == "testcase":
                self._visit_case(child, suite)
            elif child.tag == "testsuite":
                self._visit_suite(child, parent=suite)
        return suite

    def _visit_case(self, element: ET.Element, suite: Suite) -> None:
        identity = TestCaseIdentity(
            name=element.get("name", ""),
            classname=element.get("classname", ""),
            suite_name=suite.name,
            file=suite.file,
        )
        case = TestCase(
            name=identity.name,
            classname=identity.classname,
            external_id=generate_test_case_id(identity),
            folder_external_id=suite.external_id,
            time=_float_attr(element, "time"),
        )

        system_out = element.find("system-out")
        if system_out is not None:
            case.system_out = _text(system_out)
        system_err = element.find("system-err")
        if system_err is not None:
            case.system_err = _text(system_err)

        # failure > error > blocked > skipped; no marker means passed
        failure = element.find("failure")
        error = element.find("error")
        blocked = element.find("blocked")
        skipped = element.find("skipped")

        status = TestStatus.PASSED
        if failure is not None:
            status = TestStatus.FAILED
            case.failure = _outcome(failure)
        elif error is not None:
            status = TestStatus.ERROR
            case.error = _outcome(error)
        elif blocked is not None:
            status = TestStatus.BLOCKED
            case.error = _outcome(blocked)
        elif skipped is not None:
            status = TestStatus.SKIPPED
            case.skipped = _outcome(skipped)

        suite.testcases.append(case)
        self._cases.append(case)
        self._executions.append(
            Execution(
                external_id=generate_run_specific_test_case_id(identity, self.run_id),
                case_ref=case.external_id,
                run_ref=self.run_id,
                status=self.status_map[status.value],
                duration=case.time,
            )
        )

    def with_suites(self) -> "JUnitXmlParser":
        """Parse the loaded content and aggregate root totals, once."""
        if self.state >= ParseState.ROOT_AGGREGATED:
            return self
        self._parse()
        self._apply_root_suite()
        return self

    def _run_name(self) -> str:
        if isinstance(self._shape, SingleSuite):
            return self._shape.suite.get("name") or DEFAULT_RUN_NAME
        if isinstance(self._shape, SuiteCollection):
            return self._shape.container.get("name") or DEFAULT_RUN_NAME
        return DEFAULT_RUN_NAME

    def build(self) -> ParseResult:
        """
        Return the parse result, parsing first when needed.

        Repeated calls return the same result object without re-parsing.
        """
        if self._result is not None:
            return self._result
        self.with_suites()
        self._result = ParseResult(
            root=self._root,
            suites=self._suites,
            testcases=self._cases,
            executions=self._executions,
            run=Run(external_id=self.run_id, name=self._run_name()),
        )
        self.state = ParseState.BUILT
        return self._result

    def to_dict(self) -> dict:
        return self.build().to_dict(self.key_map)


def parse_report(
    file_path: str | Path,
    status_map: StatusMap | None = None,
    run_id: str | None = None,
) -> ParseResult:
    """Parse a report file in one call."""
    return JUnitXmlParser(status_map=status_map, run_id=run_id).from_file(file_path).build()
