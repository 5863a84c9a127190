"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Loading of canonical records into an API target.

Pushing happens in two steps. :meth:`Loader.plan` routes every record to an
update, a single create, a file upload or a bulk payload according to the
target's endpoints. :meth:`Loader.push` then sends the planned requests
through a batch executor.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from testrelay.batch_executor import ExecutorFactory
from testrelay.batch_executor import executor_factory as make_executor_factory
from testrelay.config_loader import EndpointContext
from testrelay.core.config import BatchConfig, get_app_config
from testrelay.core.logging import get_logger
from testrelay.exceptions import BatchExecutionError, ConfigurationError, MissingSubstitutionValues
from testrelay.field_mapping import build_request_data, map_data
from testrelay.http_client import ApiClient
from testrelay.models import ApiIntegrationConfig, EndpointAction
from testrelay.url_builder import build_update_url, endpoint_url, reference_field
from testrelay.url_template import find_placeholders, substitute_strict

logger = get_logger("testrelay.loader")

MULTI_TARGET_KEY = "multi_target"


@dataclass
class PushRequest:
    """One planned request against the target."""

    kind: str
    resource: str
    url: str
    body: dict[str, Any] | None = None
    file_path: Path | None = None
    records: int = 1
    method: str = "POST"


@dataclass
class PushStats:
    """Counters for one push pass."""

    planned: int = 0
    sent: int = 0
    failed: int = 0
    skipped_records: int = 0
    dropped_collections: list[str] = field(default_factory=list)
    requests_by_kind: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "planned": self.planned,
            "sent": self.sent,
            "failed": self.failed,
            "skipped_records": self.skipped_records,
            "dropped_collections": list(self.dropped_collections),
            "requests_by_kind": dict(self.requests_by_kind),
        }


def _path_values(template: str, *sources: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key in find_placeholders(template):
        for source in sources:
            if source.get(key) is not None:
                values[key] = source[key]
                break
            ref = reference_field(key, index_mode=False)
            if source.get(ref) is not None:
                values[key] = source[ref]
                break
    return values


class Loader:
    """
    Pushes canonical data into an API target.

    Args:
        ctx: Target endpoint context
        client: HTTP client bound to the target
        executor_factory: Builds the batch executor of a push pass
        progress_callback: Called as ``(completed, total)`` while requests settle
    """

    def __init__(
        self,
        ctx: EndpointContext,
        client: ApiClient,
        executor_factory: ExecutorFactory | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
        batch_config: BatchConfig | None = None,
    ):
        if not isinstance(ctx.config, ApiIntegrationConfig):
            raise ConfigurationError(f"Loader needs an API target, got '{ctx.config.type}'")
        self.ctx = ctx
        self.client = client
        self.executor_factory = executor_factory or make_executor_factory(
            batch_config or get_app_config().batch,
            throttle_cap=ctx.throttle_cap,
            throttle_interval=ctx.throttle_interval,
            name=f"push:{ctx.name}",
        )
        self.progress_callback = progress_callback
        self.stats = PushStats()

    def _stamp(
        self,
        body: dict[str, Any],
        override_key: str,
        include_source: bool = False,
        fallback_source: Any = None,
    ) -> dict[str, Any]:
        """Add source, source control and overrides to an outgoing body, in that order."""
        if include_source and body.get("source") is None:
            body["source"] = fallback_source
        if not self.ctx.source_control.is_empty():
            body["source_control"] = self.ctx.source_control.as_payload()
        body.update(self.ctx.overrides.get(override_key, {}))
        return body

    def _skip(self, message: str, record: Mapping[str, Any] | None = None) -> None:
        self.stats.skipped_records += 1
        logger.error(message, context={"record": dict(record)} if record is not None else None)

    def plan(self, data: Mapping[str, Any]) -> list[PushRequest]:
        """
        Route the records of every configured resource to requests.

        Returns:
            Requests in resource order, bulk and multi-target payloads after the
            per-record requests of their resources
        """
        self.stats = PushStats()
        config: ApiIntegrationConfig = self.ctx.config
        source_name = data.get("source")

        for collection, records in data.items():
            if collection == "source" or collection in self.ctx.endpoint_set:
                continue
            if records:
                self.stats.dropped_collections.append(collection)
                logger.warning(
                    f"Data found for [{collection}], but no configuration for this data type "
                    f"exists for target [{self.ctx.name}] so the data will not be sent."
                )

        requests: list[PushRequest] = []
        multi_bulk: dict[str, list[dict[str, Any]]] = {}

        for resource in self.ctx.endpoint_set:
            records = data.get(resource)
            if not records:
                continue

            resource_config = self.ctx.resource(resource)
            update = resource_config.endpoint(EndpointAction.UPDATE)
            create = resource_config.endpoint(EndpointAction.CREATE)
            update_key = update.update_key if update is not None else None
            bulk: list[dict[str, Any]] = []

            for record in records:
                mapped = map_data(resource_config.mapping, record)

                if update_key and mapped.get(update_key):
                    missing = [key for key in update.required_keys if not mapped.get(key)]
                    if missing:
                        self._skip(f"Update record missing required keys: {missing}", record)
                        continue
                    try:
                        url = build_update_url(self.ctx, resource, mapped)
                    except MissingSubstitutionValues as e:
                        self._skip(f"Update record for {resource} missing keys {e.missing}", record)
                        continue
                    body = build_request_data(update.data_key, resource_config.mapping, mapped)
                    requests.append(PushRequest("update", resource, url, self._stamp(body, resource)))

                elif create is None:
                    self._skip(f"No create endpoint for {resource}; record skipped", record)

                elif create.bulk_path or config.multi_target is not None:
                    bulk.append(self._stamp(mapped, resource, create.include_source, source_name))

                else:
                    request = self._plan_single(
                        resource, create, resource_config.mapping, mapped, source_name
                    )
                    if request is not None:
                        requests.append(request)

            if not bulk:
                continue
            if config.multi_target is not None:
                multi_bulk.setdefault(resource, []).extend(bulk)
                continue

            body = build_request_data(create.data_key, {}, {resource: bulk})
            request = self._plan_payload("bulk", resource, create.bulk_path, body, resource, len(bulk))
            if request is not None:
                requests.append(request)

        if multi_bulk:
            multi_target = config.multi_target
            body = build_request_data(multi_target.data_key, {}, multi_bulk)
            if multi_target.include_source:
                body["source"] = source_name
            request = self._plan_payload(
                "multi_target",
                MULTI_TARGET_KEY,
                multi_target.path,
                body,
                MULTI_TARGET_KEY,
                sum(len(records) for records in multi_bulk.values()),
            )
            if request is not None:
                requests.append(request)

        self.stats.planned = len(requests)
        for request in requests:
            self.stats.requests_by_kind[request.kind] = self.stats.requests_by_kind.get(request.kind, 0) + 1
        logger.info(
            f"Planned {len(requests)} requests for '{self.ctx.name}'",
            context={"by_kind": self.stats.requests_by_kind, "skipped": self.stats.skipped_records},
        )
        return requests

    def _plan_single(
        self,
        resource: str,
        create: Any,
        mapping: Mapping[str, str],
        mapped: dict[str, Any],
        source_name: Any,
    ) -> PushRequest | None:
        template = create.single_path or create.path
        values = _path_values(template, mapped, self.ctx.overrides.get(resource, {}), self.ctx.path_values)
        try:
            url = endpoint_url(self.ctx, substitute_strict(template, values))
        except MissingSubstitutionValues as e:
            self._skip(f"Create record for {resource} missing keys {e.missing}", mapped)
            return None

        payload_key = create.payload_key
        if payload_key and mapped.get(payload_key):
            file_path = Path(mapped[payload_key])
            if not file_path.is_file():
                self._skip(f"File {file_path} does not exist. Skipping...")
                return None
            return PushRequest("upload", resource, url, file_path=file_path)

        body = build_request_data(create.data_key, mapping, mapped)
        body = self._stamp(body, resource, create.include_source, source_name)
        return PushRequest("single", resource, url, body)

    def _plan_payload(
        self,
        kind: str,
        resource: str,
        template: str,
        body: dict[str, Any],
        override_key: str,
        records: int,
    ) -> PushRequest | None:
        values = _path_values(template, self.ctx.overrides.get(override_key, {}), self.ctx.path_values)
        try:
            url = endpoint_url(self.ctx, substitute_strict(template, values))
        except MissingSubstitutionValues as e:
            self.stats.skipped_records += records
            logger.error(f"Cannot build {kind} URL for {resource}: missing {e.missing}")
            return None
        return PushRequest(kind, resource, url, self._stamp(body, override_key), records=records)

    async def _send(self, request: PushRequest) -> Any:
        if request.file_path is not None:
            files = {"file": (request.file_path.name, request.file_path.read_bytes())}
            return await self.client.request(request.method, request.url, files=files)
        return await self.client.request(request.method, request.url, json_body=request.body)

    async def push(self, data: Mapping[str, Any]) -> PushStats:
        """
        Plan and send all requests for ``data``.

        Raises:
            BatchExecutionError: When any request still fails after its retries.
                Every request has settled by then and :attr:`stats` is complete.
        """
        requests = self.plan(data)
        if not requests:
            logger.info(f"Nothing to push to '{self.ctx.name}'")
            return self.stats

        executor = self.executor_factory(None)
        operations = [lambda request=request: self._send(request) for request in requests]
        try:
            await executor.run(operations, self.progress_callback)
        except BatchExecutionError as e:
            self.stats.failed = len(e.failures)
            self.stats.sent = len(requests) - self.stats.failed
            for index, error in e.failures.items():
                logger.error(
                    f"Error posting to {requests[index].url}: {error}",
                    context={"resource": requests[index].resource},
                )
            raise

        self.stats.sent = len(requests)
        logger.info(f"Pushed {self.stats.sent} requests to '{self.ctx.name}'", context=self.stats.to_dict())
        return self.stats
