"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for record transformations.
"""

import pytest

from testrelay.error_manager import ErrorManager
from testrelay.exceptions import ErrorType, TransformationError
from testrelay.transformer import ResourceTransform, Transformer

pytestmark = pytest.mark.unit


@pytest.fixture
def data():
    return {
        "source": "ci",
        "cases": [
            {"name": "Login", "time": "0.5", "priority": "high"},
            {"name": "Logout", "time": "n/a"},
        ],
        "runs": [{"name": "nightly"}],
    }


def test_rename_convert_and_defaults(data):
    transformer = Transformer()
    transform = ResourceTransform(
        rename={"name": "title"},
        convert={"time": float},
        defaults={"priority": "medium"},
    )

    result = transformer.apply({**data, "cases": data["cases"][:1]}, {"cases": transform})

    assert result["cases"] == [{"title": "Login", "time": 0.5, "priority": "high"}]
    assert result["runs"] == data["runs"]
    assert result["source"] == "ci"
    assert transformer.stats.fields_converted == 1


def test_plain_mapping_is_a_rename(data):
    result = Transformer().apply(data, {"runs": {"name": "title"}})
    assert result["runs"] == [{"title": "nightly"}]


def test_input_is_not_modified(data):
    Transformer().apply(data, {"cases": {"name": "title"}})
    assert data["cases"][0]["name"] == "Login"


def test_defaults_fill_absent_fields(data):
    result = Transformer().apply(data, {"cases": ResourceTransform(defaults={"priority": "medium"})})
    assert [case["priority"] for case in result["cases"]] == ["high", "medium"]


def test_failed_conversion_is_recorded(data):
    errors = ErrorManager()
    transformer = Transformer(errors)

    result = transformer.apply(data, {"cases": ResourceTransform(convert={"time": float})})

    assert [case["time"] for case in result["cases"]] == [0.5, "n/a"]
    assert transformer.stats.errors == 1
    recorded = errors.errors_by_type(ErrorType.TRANSFORMATION)
    assert len(recorded) == 1
    assert recorded[0].context == {"collection": "cases", "index": 1, "field": "time"}
    assert isinstance(recorded[0].__cause__, ValueError)


def test_strict_mode_aborts_on_first_failure(data):
    transformer = Transformer(ErrorManager(strict=True))
    with pytest.raises(TransformationError, match="cases\\[1\\]"):
        transformer.apply(data, {"cases": ResourceTransform(convert={"time": float})})


def test_missing_collections_are_ignored(data):
    result = Transformer().apply(data, {"folders": {"name": "title"}})
    assert "folders" not in result
