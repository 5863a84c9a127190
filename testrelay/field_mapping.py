"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Field mapping between a service's records and canonical records.

A resource's ``mapping`` renames fields from one side's names to the other's.
Fields the mapping does not mention are kept as they are, or gathered into a
``custom_fields`` bucket when the resource asks for it.
"""

import re
from collections.abc import Mapping
from typing import Any

CUSTOM_FIELDS_KEY = "custom_fields"

# Identity and provenance fields never move into the custom field bucket
RESERVED_FIELDS = frozenset({"source_id", "external_id", "source", CUSTOM_FIELDS_KEY})

FALLBACK_COLLECTION_KEYS = ("data", "results", "items", "entries")


def map_data(
    mapping: Mapping[str, str],
    record: Mapping[str, Any],
    collect_custom_fields: bool = False,
) -> dict[str, Any]:
    """
    Rename the fields of a record according to a mapping.

    Only truthy values are renamed; a falsy value stays under its original name.
    The input record is not modified.

    Args:
        mapping: ``{from_field: to_field}`` pairs
        record: The record to map
        collect_custom_fields: Move fields the mapping does not name into ``custom_fields``

    Returns:
        The mapped record
    """
    mapped = dict(record)
    for source_field, target_field in mapping.items():
        if mapped.get(source_field):
            value = mapped[source_field]
            if source_field != target_field:
                del mapped[source_field]
            mapped[target_field] = value

    if collect_custom_fields:
        named = set(mapping) | set(mapping.values()) | RESERVED_FIELDS
        custom = dict(mapped.get(CUSTOM_FIELDS_KEY) or {})
        for field_name in [name for name in mapped if name not in named]:
            custom[field_name] = mapped.pop(field_name)
        if custom:
            mapped[CUSTOM_FIELDS_KEY] = custom

    return mapped


def is_ignored(record: Mapping[str, Any], ignore: Mapping[str, list[str]] | None) -> bool:
    """True when any ignore pattern matches the string value of its field."""
    if not ignore:
        return False
    for field_name, value in record.items():
        for pattern in ignore.get(field_name, ()):
            if re.search(pattern, str(value)):
                return True
    return False


def map_data_with_ignores(
    mapping: Mapping[str, str],
    record: Mapping[str, Any],
    ignore: Mapping[str, list[str]] | None = None,
    collect_custom_fields: bool = False,
) -> dict[str, Any] | None:
    """Map a record, or return None when an ignore pattern vetoes it."""
    if is_ignored(record, ignore):
        return None
    return map_data(mapping, record, collect_custom_fields)


def build_request_data(
    data_key: str | None,
    mapping: Mapping[str, str],
    record: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Map a record and shape it into a request body.

    With a ``data_key`` every top-level value is wrapped under that key, so
    ``{"executions": [...]}`` with ``data_key="entries"`` becomes
    ``{"executions": {"entries": [...]}}``.
    """
    mapped = map_data(mapping, record)
    if not data_key:
        return mapped
    return {key: {data_key: value} for key, value in mapped.items()}


def extract_records(payload: Any, data_key: str | None = None) -> list[dict[str, Any]]:
    """
    Pull the list of records out of a response body.

    The body's ``data_key`` entry is used when present. Otherwise the first
    list found under a common collection key is used. A single object is
    treated as one record.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []

    if data_key and data_key in payload:
        return extract_records(payload[data_key])

    for key in FALLBACK_COLLECTION_KEYS:
        if isinstance(payload.get(key), list):
            return extract_records(payload[key])

    return [payload] if payload else []
