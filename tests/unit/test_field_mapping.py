"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for field mapping between service and canonical records.
"""

import pytest

from testrelay.field_mapping import (
    build_request_data,
    extract_records,
    is_ignored,
    map_data,
    map_data_with_ignores,
)

pytestmark = pytest.mark.unit


class TestMapData:
    def test_renames_and_keeps_unmapped_fields(self):
        record = {"id": 5, "title": "Login", "priority": 2}
        assert map_data({"id": "source_id", "title": "name"}, record) == {
            "source_id": 5,
            "name": "Login",
            "priority": 2,
        }
        assert record == {"id": 5, "title": "Login", "priority": 2}

    def test_falsy_values_are_not_renamed(self):
        assert map_data({"title": "name"}, {"title": ""}) == {"title": ""}

    def test_identity_mapping(self):
        assert map_data({"comment": "comment"}, {"comment": "ok"}) == {"comment": "ok"}

    def test_collect_custom_fields(self):
        record = {"id": 1, "title": "t", "custom_env": "prod", "source": "tr", "custom_fields": {"a": 1}}
        mapped = map_data({"id": "source_id", "title": "name"}, record, collect_custom_fields=True)
        assert mapped == {
            "source_id": 1,
            "name": "t",
            "source": "tr",
            "custom_fields": {"a": 1, "custom_env": "prod"},
        }


class TestIgnores:
    def test_regex_matches_string_values(self):
        ignore = {"title": ["^\\[DRAFT\\]"], "priority": ["^4$"]}
        assert is_ignored({"title": "[DRAFT] checkout"}, ignore)
        assert is_ignored({"priority": 4}, ignore)
        assert not is_ignored({"title": "checkout", "priority": 3}, ignore)

    def test_no_rules(self):
        assert not is_ignored({"title": "x"}, None)

    def test_vetoed_record_maps_to_none(self):
        ignore = {"status": ["retired"]}
        assert map_data_with_ignores({}, {"status": "retired"}, ignore) is None
        assert map_data_with_ignores({"status": "state"}, {"status": "active"}, ignore) == {"state": "active"}


class TestBuildRequestData:
    def test_without_data_key(self):
        assert build_request_data(None, {"name": "title"}, {"name": "x"}) == {"title": "x"}

    def test_data_key_wraps_top_level_values(self):
        body = build_request_data("entries", {}, {"executions": [{"id": 1}]})
        assert body == {"executions": {"entries": [{"id": 1}]}}


class TestExtractRecords:
    def test_data_key(self):
        assert extract_records({"cases": [{"id": 1}], "offset": 0}, "cases") == [{"id": 1}]

    def test_bare_list(self):
        assert extract_records([{"id": 1}, "noise", {"id": 2}]) == [{"id": 1}, {"id": 2}]

    @pytest.mark.parametrize("key", ["data", "results", "items", "entries"])
    def test_fallback_keys(self, key):
        assert extract_records({key: [{"id": 1}], "size": 1}, "missing") == [{"id": 1}]

    def test_single_object(self):
        assert extract_records({"id": 3, "name": "x"}) == [{"id": 3, "name": "x"}]

    @pytest.mark.parametrize("payload", [None, [], {}, "text", {"cases": []}])
    def test_empty_payloads(self, payload):
        assert extract_records(payload, "cases") == []
