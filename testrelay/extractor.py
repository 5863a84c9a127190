"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Extraction of records from migration sources.

API sources are walked resource by resource in fetch order, so every URL
template can be expanded from the records of its prerequisites. File sources
load a JUnit report or a JSON dump in one step. Every source returns the same
shape: ``{"source": <integration name>, <collection>: [record, ...]}``.
"""

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from testrelay.batch_executor import ExecutorFactory, executor_factory
from testrelay.config_loader import EndpointContext
from testrelay.core.config import BatchConfig, get_app_config
from testrelay.core.logging import get_logger
from testrelay.error_manager import ErrorManager
from testrelay.exceptions import ConfigurationError, DataError, ErrorType
from testrelay.field_mapping import extract_records, map_data_with_ignores
from testrelay.http_client import ApiClient
from testrelay.junit_parser import JUnitXmlParser
from testrelay.models import EndpointAction
from testrelay.report_models import STATUS_MAPS
from testrelay.report_transform import to_canonical
from testrelay.url_builder import build_get_urls, build_index_urls

logger = get_logger("testrelay.extractor")

IdRecords = Mapping[str, Sequence[Mapping[str, Any]]]
PullProgress = Callable[[str, int, int], None]


@dataclass
class PullStats:
    """Counters for one pull pass."""

    requests: int = 0
    failed_requests: int = 0
    records: int = 0
    ignored_records: int = 0
    records_by_collection: dict[str, int] = field(default_factory=dict)
    failed_urls: list[str] = field(default_factory=list)

    def count(self, collection: str, records: int) -> None:
        self.records += records
        self.records_by_collection[collection] = self.records_by_collection.get(collection, 0) + records

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "failed_requests": self.failed_requests,
            "records": self.records,
            "ignored_records": self.ignored_records,
            "records_by_collection": dict(self.records_by_collection),
            "failed_urls": list(self.failed_urls),
        }


def _filter_ignored(
    records: list[dict[str, Any]],
    ignore: Mapping[str, list[str]] | None,
    stats: PullStats,
) -> list[dict[str, Any]]:
    kept = []
    for record in records:
        mapped = map_data_with_ignores({}, record, ignore)
        if mapped is None:
            stats.ignored_records += 1
        else:
            kept.append(mapped)
    return kept


class Extractor:
    """
    Pulls every configured resource of an API source.

    Args:
        ctx: Source endpoint context
        client: HTTP client bound to the source
        executor_factory: Builds the batch executor of each resource pass
        progress_callback: Called as ``(resource, completed, total)`` while requests settle
        error_manager: Records every GET that still fails after its retries
    """

    def __init__(
        self,
        ctx: EndpointContext,
        client: ApiClient,
        executor_factory: ExecutorFactory | None = None,
        progress_callback: PullProgress | None = None,
        batch_config: BatchConfig | None = None,
        error_manager: ErrorManager | None = None,
    ):
        if not ctx.is_api:
            raise ConfigurationError(f"Extractor needs an API source, got '{ctx.config.type}'")
        self.ctx = ctx
        self.client = client
        self.executor_factory = executor_factory or _default_factory(ctx, batch_config, "pull")
        self.progress_callback = progress_callback
        self.error_manager = error_manager
        self.stats = PullStats()

    async def pull(self, ids: IdRecords | None = None) -> dict[str, Any]:
        """
        Fetch records from the source.

        Without ``ids`` every resource of the fetch order is indexed. With
        ``ids`` only the named resources are requested through their ``get``
        endpoints, once per supplied id record.

        Returns:
            ``{"source": name, collection: [records]}``, collections keyed by
            ``target_type`` when a resource declares one
        """
        self.stats = PullStats()
        data: dict[str, Any] = {"source": self.ctx.name}
        fetched: dict[str, list[dict[str, Any]]] = {}

        if ids:
            action = EndpointAction.GET
            resources = list(ids)
        else:
            action = EndpointAction.INDEX
            resources = list(self.ctx.endpoint_set)

        logger.info(
            f"Pulling {len(resources)} resources from '{self.ctx.name}'",
            context={"action": action.value, "resources": resources},
        )

        for resource in resources:
            if action == EndpointAction.GET:
                urls = build_get_urls(self.ctx, resource, ids)
            else:
                urls = build_index_urls(self.ctx, resource, fetched)

            records = await self._fetch(resource, action, [url for url, _ in urls])
            fetched[resource] = records

            config = self.ctx.resource(resource)
            collection = (config.target_type if config else None) or resource
            data.setdefault(collection, []).extend(records)
            self.stats.count(collection, len(records))

        logger.info(
            f"Pulled {self.stats.records} records from '{self.ctx.name}'",
            context={
                "requests": self.stats.requests,
                "failed_requests": self.stats.failed_requests,
                "ignored": self.stats.ignored_records,
            },
        )
        return data

    async def _fetch(self, resource: str, action: EndpointAction, urls: list[str]) -> list[dict[str, Any]]:
        if not urls:
            return []

        config = self.ctx.resource(resource)
        endpoint = config.endpoint(action)
        executor = self.executor_factory(endpoint.throttle)
        operations = [lambda url=url: self.client.get(url) for url in urls]

        def on_progress(completed: int, total: int) -> None:
            if self.progress_callback is not None:
                self.progress_callback(resource, completed, total)

        settled = await executor.run_settled(operations, on_progress)
        self.stats.requests += len(urls)

        records: list[dict[str, Any]] = []
        ignore = self.ctx.ignore_config.get(resource)
        for url, result in zip(urls, settled, strict=True):
            if not result.success:
                # A failed GET contributes no records; the pass goes on
                logger.error(
                    f"Error fetching {url}: {result.error}",
                    context={"resource": resource, "attempts": result.attempts},
                )
                self.stats.failed_requests += 1
                self.stats.failed_urls.append(url)
                if self.error_manager is not None:
                    self.error_manager.handle_error(
                        result.error, ErrorType.NETWORK, context={"url": url, "resource": resource}
                    )
                continue

            for record in extract_records(result.value, endpoint.data_key):
                mapped = map_data_with_ignores(config.mapping, record, ignore, config.collect_custom_fields)
                if mapped is None:
                    self.stats.ignored_records += 1
                else:
                    records.append(mapped)

        logger.debug(f"Fetched {len(records)} {resource} records from {len(urls)} requests")
        return records


def _default_factory(ctx: EndpointContext, batch_config: BatchConfig | None, name: str) -> ExecutorFactory:
    return executor_factory(
        batch_config or get_app_config().batch,
        throttle_cap=ctx.throttle_cap,
        throttle_interval=ctx.throttle_interval,
        name=f"{name}:{ctx.name}",
    )


def _file_path(ctx: EndpointContext) -> Path:
    file_path = getattr(ctx.config, "file_path", None)
    if not file_path:
        raise ConfigurationError(f"Source '{ctx.name}' does not name a file_path")
    return Path(file_path)


class JUnitSource:
    """
    Source reading one JUnit XML report.

    Args:
        ctx: Source endpoint context of a ``junit`` integration
        run_id: Run id to stamp on executions; a fresh one is generated when omitted
        status_map: Name of the status vocabulary, ``native`` or ``testrail``
    """

    def __init__(self, ctx: EndpointContext, run_id: str | None = None, status_map: str = "native"):
        if status_map not in STATUS_MAPS:
            raise ConfigurationError(
                f"Unknown status map '{status_map}'", context={"supported": sorted(STATUS_MAPS)}
            )
        self.ctx = ctx
        self.run_id = run_id
        self.status_map = status_map
        self.stats = PullStats()

    async def pull(self, ids: IdRecords | None = None) -> dict[str, Any]:
        self.stats = PullStats()
        path = _file_path(self.ctx)
        parser = JUnitXmlParser(status_map=STATUS_MAPS[self.status_map], run_id=self.run_id)
        result = parser.from_file(path).build()
        logger.info(
            f"Parsed {len(result.testcases)} test cases from {path}",
            context={"run_id": result.run_id, "suites": len(result.suites)},
        )

        data: dict[str, Any] = {"source": self.ctx.name}
        for collection, records in to_canonical(result, self.ctx.name).items():
            kept = _filter_ignored(records, self.ctx.ignore_config.get(collection), self.stats)
            data[collection] = kept
            self.stats.count(collection, len(kept))
        return data


class JsonSource:
    """Source reading a JSON dump of ``{collection: [record, ...]}``."""

    def __init__(self, ctx: EndpointContext):
        self.ctx = ctx
        self.stats = PullStats()

    async def pull(self, ids: IdRecords | None = None) -> dict[str, Any]:
        self.stats = PullStats()
        path = _file_path(self.ctx)
        try:
            with open(path, encoding="utf-8") as f:
                content = json.load(f)
        except json.JSONDecodeError as e:
            raise DataError(f"Invalid JSON in {path}: {e}", context={"path": str(path)}) from e
        except OSError as e:
            raise DataError(f"Cannot read {path}: {e}", context={"path": str(path)}) from e

        if not isinstance(content, dict):
            raise DataError(f"JSON source {path} must contain an object", context={"path": str(path)})

        data: dict[str, Any] = {"source": content.get("source") or self.ctx.name}
        for collection, records in content.items():
            if collection == "source":
                continue
            if not isinstance(records, list):
                logger.warning(f"Skipping '{collection}' in {path}: expected a list of records")
                continue
            kept = _filter_ignored(
                [r for r in records if isinstance(r, dict)],
                self.ctx.ignore_config.get(collection),
                self.stats,
            )
            data[collection] = kept
            self.stats.count(collection, len(kept))

        logger.info(f"Loaded {self.stats.records} records from {path}")
        return data


def create_source(
    ctx: EndpointContext,
    client: ApiClient | None = None,
    run_id: str | None = None,
    status_map: str = "native",
    **options: Any,
) -> Extractor | JUnitSource | JsonSource:
    """Pick the source implementation matching the integration type."""
    if ctx.config.type == "junit":
        return JUnitSource(ctx, run_id=run_id, status_map=status_map)
    if ctx.config.type == "json":
        return JsonSource(ctx)
    if client is None:
        raise ConfigurationError(f"API source '{ctx.name}' needs an HTTP client")
    return Extractor(ctx, client, **options)
