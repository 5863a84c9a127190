"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Request ordering for configured resources.

A resource whose path embeds ``{projects.id}`` can only be requested once the
``projects`` collection is known. The resolver walks those references and
produces a fetch order where every prerequisite precedes its dependents.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from testrelay.exceptions import CyclicDependencyError, DependencyResolutionError
from testrelay.models import ApiIntegrationConfig, EndpointAction, ResourceConfig
from testrelay.url_template import find_placeholders

ResourceGraph = Mapping[str, ResourceConfig]


def placeholder_resource(placeholder: str) -> str:
    """The resource a placeholder refers to: the part before the first dot."""
    return placeholder.split(".", 1)[0]


def placeholder_field(placeholder: str) -> str | None:
    parts = placeholder.split(".", 1)
    return parts[1] if len(parts) > 1 else None


def endpoint_path(graph: ResourceGraph, resource: str, action: EndpointAction | str) -> str:
    """
    Return the template inspected for a resource's dependencies.

    Raises:
        DependencyResolutionError: If the resource, action or path is not configured.
    """
    config = graph.get(resource)
    if config is None:
        raise DependencyResolutionError(
            f"Invalid key [{resource}]: resource is not configured",
            context={"resource": resource, "action": str(action)},
        )
    endpoint = config.endpoint(action)
    if endpoint is None or not endpoint.template:
        raise DependencyResolutionError(
            f"Invalid key [{resource}]: no usable '{EndpointAction(action).value}' path",
            context={"resource": resource, "action": str(action)},
        )
    return endpoint.template


def build_dependency_chain(
    graph: ResourceGraph,
    resource: str,
    action: EndpointAction | str,
    supplied: Iterable[str] = (),
    _visiting: tuple[str, ...] = (),
) -> list[str]:
    """
    Return the prerequisite chain of a resource, ending with the resource itself.

    The chain may contain duplicates; :func:`resolve_fetch_order` removes them.

    Args:
        graph: Resources of one direction
        resource: Resource to resolve
        action: Endpoint action whose path is inspected
        supplied: Placeholder prefixes whose values the caller provides

    Raises:
        DependencyResolutionError: For an unknown resource or a missing path.
        CyclicDependencyError: If the resource is reached again through its own prerequisites.
    """
    if resource in _visiting:
        cycle_start = _visiting.index(resource)
        raise CyclicDependencyError([*_visiting[cycle_start:], resource])

    supplied = frozenset(supplied)
    path = endpoint_path(graph, resource, action)

    chain: list[str] = []
    for placeholder in find_placeholders(path):
        prerequisite = placeholder_resource(placeholder)
        if prerequisite in supplied:
            continue
        chain.extend(
            build_dependency_chain(
                graph, prerequisite, action, supplied, _visiting=(*_visiting, resource)
            )
        )
    chain.append(resource)
    return chain


def resolve_fetch_order(
    graph: ResourceGraph,
    resources: Iterable[str],
    action: EndpointAction | str,
    supplied: Iterable[str] = (),
) -> list[str]:
    """
    Flatten the dependency chains of the requested resources into a fetch order.

    Duplicates are removed keeping the first occurrence, so every prerequisite
    appears exactly once and before any resource that references it.
    """
    supplied = tuple(supplied)
    order: dict[str, None] = {}
    for resource in resources:
        for name in build_dependency_chain(graph, resource, action, supplied):
            order.setdefault(name, None)
    return list(order)


@dataclass(frozen=True)
class DenormalizedKey:
    """
    Cross-match rule for a path that needs two unrelated parents.

    For ``cases`` with ``{"projects": {"suites.id": "project_id"}}``, every
    fetched suite whose ``project_id`` equals a project's id contributes its
    own id to the ``{suites.id}`` placeholder of that project's URL.
    """

    endpoint: str
    prerequisite: str
    placeholder: str
    foreign_field: str

    @classmethod
    def from_config(
        cls, denormalized_keys: Mapping[str, Mapping[str, Mapping[str, str]]], endpoint: str
    ) -> list["DenormalizedKey"]:
        """Matchers declared for one endpoint in a ``denormalized_keys`` block."""
        return [
            cls(endpoint, prerequisite, placeholder, foreign_field)
            for prerequisite, matches in denormalized_keys.get(endpoint, {}).items()
            for placeholder, foreign_field in matches.items()
        ]

    @property
    def resource(self) -> str:
        return placeholder_resource(self.placeholder)

    @property
    def field(self) -> str | None:
        return placeholder_field(self.placeholder)


def denormalized_matchers(config: ApiIntegrationConfig, endpoint: str) -> list[DenormalizedKey]:
    """Expand the ``denormalized_keys`` block of one endpoint into matcher tuples."""
    return DenormalizedKey.from_config(config.denormalized_keys, endpoint)


def order_substitution_keys(
    placeholders: Iterable[str],
    matchers: Iterable[DenormalizedKey],
) -> list[str]:
    """
    Deduplicate placeholders, moving those of denormalized prerequisites to the front.
    """
    denormalized = {matcher.prerequisite for matcher in matchers}
    unique = list(dict.fromkeys(placeholders))
    front = [key for key in unique if placeholder_resource(key) in denormalized]
    return front + [key for key in unique if key not in front]
