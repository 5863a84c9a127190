"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Expansion of endpoint templates into concrete request URLs.

Index paths such as ``/projects/{projects.id}/suites`` expand into one URL per
record already fetched for the referenced resource. Denormalized keys cover
paths that need two related parents at once, such as a project and one of its
suites, and only combine records that actually belong together.
"""

from collections.abc import Mapping, Sequence
from typing import Any

from testrelay.config_loader import EndpointContext
from testrelay.core.logging import get_logger
from testrelay.dependency_graph import (
    DenormalizedKey,
    denormalized_matchers,
    order_substitution_keys,
    placeholder_field,
    placeholder_resource,
)
from testrelay.exceptions import DependencyResolutionError
from testrelay.models import ApiIntegrationConfig, EndpointAction
from testrelay.url_template import find_placeholders, join_url, substitute, substitute_strict

logger = get_logger("testrelay.url_builder")

Records = Sequence[Mapping[str, Any]]


def reference_field(placeholder: str, index_mode: bool = True) -> str:
    """
    Field of a referenced record that fills a placeholder.

    ``{projects.id}`` and ``{projects}`` read a fetched record's ``source_id``
    when indexing and a supplied record's ``id`` otherwise; ``{projects.key}``
    reads ``key``.
    """
    field_name = placeholder_field(placeholder)
    if field_name is None or field_name == "id":
        return "source_id" if index_mode else "id"
    return field_name


def endpoint_url(ctx: EndpointContext, path: str) -> str:
    return join_url(ctx.base_url, substitute(ctx.config.base_path, ctx.path_values), path)


def fill_context_values(ctx: EndpointContext, template: str) -> str:
    """Fill placeholders that no resource provides from the context's credential fields."""
    values = {
        key: ctx.path_values[key]
        for key in find_placeholders(template)
        if key in ctx.path_values and placeholder_resource(key) not in ctx.resources
    }
    return substitute(template, values)


def _endpoint_template(ctx: EndpointContext, resource: str, action: EndpointAction) -> str:
    config = ctx.resource(resource)
    endpoint = config.endpoint(action) if config is not None else None
    if endpoint is None:
        raise DependencyResolutionError(
            f"Invalid key [{resource}]: no '{action.value}' endpoint configured",
            context={"integration": ctx.name, "resource": resource},
        )
    return endpoint.template


def _group_by_resource(keys: list[str]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for key in keys:
        groups.setdefault(placeholder_resource(key), []).append(key)
    return groups


def _denormalized_values(
    primary_value: Any,
    matchers: list[DenormalizedKey],
    fetched: Mapping[str, Records],
) -> list[dict[str, Any]]:
    """
    Placeholder values contributed by records matching a primary record.

    Each matcher narrows the secondary resource to records whose foreign field
    equals the primary value; several matchers combine as a cross product.
    """
    combinations: list[dict[str, Any]] = [{}]
    for matcher in matchers:
        ref = reference_field(matcher.placeholder)
        matching = [
            record
            for record in fetched.get(matcher.resource) or ()
            if record.get(matcher.foreign_field) == primary_value and record.get(ref) is not None
        ]
        combinations = [
            {**combination, matcher.placeholder: record[ref]}
            for combination in combinations
            for record in matching
        ]
    return combinations


def build_index_urls(
    ctx: EndpointContext,
    resource: str,
    fetched: Mapping[str, Records],
) -> list[tuple[str, str]]:
    """
    Expand a resource's index path against the records fetched so far.

    Args:
        ctx: Source endpoint context
        resource: Resource whose index endpoint is expanded
        fetched: Records fetched so far, keyed by resource name

    Returns:
        ``(url, resource)`` pairs, empty when a prerequisite has no records
    """
    path = fill_context_values(ctx, _endpoint_template(ctx, resource, EndpointAction.INDEX))
    placeholders = find_placeholders(path)
    if not placeholders:
        return [(endpoint_url(ctx, path), resource)]

    matchers = (
        denormalized_matchers(ctx.config, resource) if isinstance(ctx.config, ApiIntegrationConfig) else []
    )
    keys = order_substitution_keys(placeholders, matchers)
    consumed = {matcher.placeholder for matcher in matchers}

    templates = [path]
    for prerequisite, group in _group_by_resource([k for k in keys if k not in consumed]).items():
        records = fetched.get(prerequisite)
        if not records:
            logger.warning(
                f"No {prerequisite} records available to build {resource} URLs",
                context={"integration": ctx.name, "template": path},
            )
            return []

        prerequisite_matchers = [m for m in matchers if m.prerequisite == prerequisite]
        expanded = []
        for template in templates:
            for record in records:
                values = {key: record.get(reference_field(key)) for key in group}
                if any(value is None for value in values.values()):
                    logger.debug(f"Skipping {prerequisite} record without {', '.join(group)} for {resource}")
                    continue
                if not prerequisite_matchers:
                    expanded.append(substitute(template, values))
                    continue
                primary_value = values[group[0]]
                for extra in _denormalized_values(primary_value, prerequisite_matchers, fetched):
                    expanded.append(substitute(template, {**values, **extra}))
        templates = expanded

    if not templates:
        logger.info(f"No {resource} URLs could be built from the fetched records", context={"template": path})
    return [(endpoint_url(ctx, template), resource) for template in templates]


def build_get_urls(
    ctx: EndpointContext,
    resource: str,
    ids: Mapping[str, Records],
) -> list[tuple[str, str]]:
    """
    Expand a resource's get path once per caller-supplied id record.

    A record may key values by placeholder name (``{"projects.id": 3}``) or by
    the referenced field (``{"id": 3}``).
    """
    path = fill_context_values(ctx, _endpoint_template(ctx, resource, EndpointAction.GET))
    placeholders = find_placeholders(path)
    records = ids.get(resource) or ()
    if not placeholders:
        return [(endpoint_url(ctx, path), resource)]

    urls = []
    for record in records:
        values = {}
        for key in placeholders:
            if key in record:
                values[key] = record[key]
            elif record.get(reference_field(key, index_mode=False)) is not None:
                values[key] = record[reference_field(key, index_mode=False)]
        urls.append((endpoint_url(ctx, substitute_strict(path, values)), resource))
    return urls


def build_update_url(ctx: EndpointContext, resource: str, record: Mapping[str, Any]) -> str:
    """
    Fill a resource's update path from the record being updated.

    ``{cases.id}`` and ``{id}`` read the record's ``id``; other placeholders
    read the field they name.

    Raises:
        MissingSubstitutionValues: If the record lacks a value the path needs.
    """
    path = fill_context_values(ctx, _endpoint_template(ctx, resource, EndpointAction.UPDATE))
    values = {}
    for key in find_placeholders(path):
        if key in record:
            values[key] = record[key]
        elif record.get(reference_field(key, index_mode=False)) is not None:
            values[key] = record[reference_field(key, index_mode=False)]
    return endpoint_url(ctx, substitute_strict(path, values))
