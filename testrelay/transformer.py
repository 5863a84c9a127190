"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Optional record transformations between pull and push.

A transform renames fields, converts field values with callables and fills
defaults. Value conversion errors go through the error manager: in strict
mode the first one aborts the pass, otherwise the field keeps its original
value and the error is recorded.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from testrelay.core.logging import get_logger
from testrelay.error_manager import ErrorManager
from testrelay.exceptions import ErrorType, TransformationError
from testrelay.field_mapping import map_data

logger = get_logger("testrelay.transformer")

FieldConverter = Callable[[Any], Any]


@dataclass
class ResourceTransform:
    """
    Transform applied to every record of one collection.

    Attributes:
        rename: ``{from_field: to_field}`` applied first
        convert: ``{field: callable}`` applied to values after renaming
        defaults: Values set on fields that are absent
    """

    rename: dict[str, str] = field(default_factory=dict)
    convert: dict[str, FieldConverter] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransformStats:
    records: int = 0
    fields_converted: int = 0
    errors: int = 0


class Transformer:
    """
    Applies per-collection transforms to pulled data.

    Args:
        error_manager: Receives conversion errors; its strict flag decides
            whether the first one aborts the pass
    """

    def __init__(self, error_manager: ErrorManager | None = None):
        self.error_manager = error_manager or ErrorManager()
        self.stats = TransformStats()

    def apply(
        self,
        data: Mapping[str, Any],
        transforms: Mapping[str, ResourceTransform | Mapping[str, str]],
    ) -> dict[str, Any]:
        """
        Return a transformed copy of ``data``.

        A plain mapping given as a transform is treated as a rename.

        Raises:
            TransformationError: In strict mode, on the first failed conversion.
        """
        self.stats = TransformStats()
        result: dict[str, Any] = dict(data)
        for collection, transform in transforms.items():
            records = data.get(collection)
            if not isinstance(records, list):
                continue
            if not isinstance(transform, ResourceTransform):
                transform = ResourceTransform(rename=dict(transform))
            result[collection] = [
                self._transform_record(collection, index, record, transform)
                for index, record in enumerate(records)
            ]

        if self.stats.errors:
            logger.warning(
                f"Transformation finished with {self.stats.errors} errors",
                context={"records": self.stats.records, "converted": self.stats.fields_converted},
            )
        return result

    def _transform_record(
        self,
        collection: str,
        index: int,
        record: Mapping[str, Any],
        transform: ResourceTransform,
    ) -> dict[str, Any]:
        self.stats.records += 1
        transformed = map_data(transform.rename, record)

        for field_name, convert in transform.convert.items():
            if field_name not in transformed:
                continue
            try:
                transformed[field_name] = convert(transformed[field_name])
                self.stats.fields_converted += 1
            except Exception as e:
                self.stats.errors += 1
                error = TransformationError(
                    f"Failed to convert '{field_name}' of {collection}[{index}]: {e}",
                    context={"collection": collection, "index": index, "field": field_name},
                )
                error.__cause__ = e
                self.error_manager.handle_error(error, ErrorType.TRANSFORMATION)

        for field_name, value in transform.defaults.items():
            transformed.setdefault(field_name, value)
        return transformed
