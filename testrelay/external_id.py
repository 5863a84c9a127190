"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Content-derived external identifiers for test cases and suites.

The same report ingested twice yields the same case and suite ids, which lets
targets deduplicate re-submissions. Ids are a short prefix followed by the
first 16 hex characters of a sha256 digest over the identifying attributes.
"""

import hashlib
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

ID_LENGTH = 16
SEPARATOR = "::"
TEST_CASE_PREFIX = "tc"
TEST_SUITE_PREFIX = "ts"

IdKind = Literal["tc", "ts"]

_ID_PATTERNS = {
    kind: re.compile(rf"^{kind}_[0-9a-f]{{{ID_LENGTH}}}$")
    for kind in (TEST_CASE_PREFIX, TEST_SUITE_PREFIX)
}


@dataclass(frozen=True)
class TestCaseIdentity:
    """Attributes that identify a test case across ingestions."""

    __test__ = False

    name: str
    classname: str
    suite_name: str | None = None
    file: str | None = None


@dataclass(frozen=True)
class TestSuiteIdentity:
    """Attributes that identify a test suite across ingestions."""

    __test__ = False

    name: str
    file: str | None = None


def _digest(components: Iterable[str | None], prefix: str) -> str:
    # Empty components are dropped before joining
    composite = SEPARATOR.join(part for part in components if part)
    digest = hashlib.sha256(composite.encode("utf-8")).hexdigest()[:ID_LENGTH]
    return f"{prefix}_{digest}"


def generate_test_case_id(identity: TestCaseIdentity) -> str:
    return _digest(
        (identity.name, identity.classname, identity.suite_name, identity.file),
        TEST_CASE_PREFIX,
    )


def generate_test_suite_id(identity: TestSuiteIdentity) -> str:
    return _digest((identity.name, identity.file), TEST_SUITE_PREFIX)


def generate_hierarchical_test_case_id(
    case: TestCaseIdentity, suite: TestSuiteIdentity
) -> str:
    """Compose ``"{suite_id}::{case_id}"`` with the case bound to the suite's name."""
    bound = TestCaseIdentity(case.name, case.classname, suite.name, case.file)
    return f"{generate_test_suite_id(suite)}{SEPARATOR}{generate_test_case_id(bound)}"


def generate_run_specific_test_case_id(identity: TestCaseIdentity, run_id: str) -> str:
    return f"{run_id}{SEPARATOR}{generate_test_case_id(identity)}"


def extract_base_test_case_id(run_specific_id: str) -> str:
    """
    Strip the run prefix from a run-specific id.

    Ids with a single segment are returned unchanged.
    """
    parts = run_specific_id.split(SEPARATOR)
    if len(parts) >= 2:
        return SEPARATOR.join(parts[1:])
    return run_specific_id


def validate_external_id(external_id: str, kind: IdKind) -> bool:
    """Check the ``{kind}_`` prefix followed by exactly 16 lowercase hex characters."""
    pattern = _ID_PATTERNS.get(kind)
    if pattern is None:
        raise ValueError(f"Unknown external id kind: {kind!r}")
    return bool(pattern.match(external_id))


def is_test_case_id(external_id: str) -> bool:
    return validate_external_id(external_id, TEST_CASE_PREFIX)


def is_test_suite_id(external_id: str) -> bool:
    return validate_external_id(external_id, TEST_SUITE_PREFIX)


def generate_test_case_ids(identities: Iterable[TestCaseIdentity]) -> list[str]:
    return [generate_test_case_id(identity) for identity in identities]


def generate_test_suite_ids(identities: Iterable[TestSuiteIdentity]) -> list[str]:
    return [generate_test_suite_id(identity) for identity in identities]


def generate_test_case_id_map(identities: Iterable[TestCaseIdentity]) -> dict[str, str]:
    """Map ``"classname::name"`` to the case id; later duplicates overwrite earlier ones."""
    return {
        f"{identity.classname}{SEPARATOR}{identity.name}": generate_test_case_id(identity)
        for identity in identities
    }
