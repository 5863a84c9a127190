"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Migration pipeline: pull from every source, transform, push to every target.

The pipeline owns the HTTP clients of the run, binds a correlation id to all
of its log lines and records a timeline of phase events. Failures are logged,
recorded as an event and in the error manager, then re-raised.
"""

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
from rich.progress import Progress, TaskID

from testrelay.config_loader import EndpointContext
from testrelay.core.config import BatchConfig, get_app_config
from testrelay.core.logging import correlation_id, get_logger
from testrelay.error_manager import ErrorManager
from testrelay.extractor import Extractor, IdRecords, PullStats, create_source
from testrelay.http_client import ApiClient
from testrelay.loader import Loader, PushStats
from testrelay.transformer import ResourceTransform, Transformer

logger = get_logger("testrelay.orchestrator")


class MigrationPhase(str, Enum):
    PULL = "pull"
    TRANSFORM = "transform"
    PUSH = "push"


@dataclass
class MigrationEvent:
    """One step of the migration timeline."""

    phase: MigrationPhase
    status: str
    message: str
    integration: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "status": self.status,
            "message": self.message,
            "integration": self.integration,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return (
            f"[{self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] {self.phase.value.upper()}: "
            f"{self.message} ({self.status})"
        )


@dataclass
class MigrationResult:
    """Outcome of a pipeline run."""

    correlation_id: str
    source_stats: dict[str, PullStats] = field(default_factory=dict)
    target_stats: dict[str, PushStats] = field(default_factory=dict)
    record_counts: dict[str, int] = field(default_factory=dict)
    events: list[MigrationEvent] = field(default_factory=list)
    duration: float = 0.0
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def failed_requests(self) -> int:
        return sum(stats.failed_requests for stats in self.source_stats.values())

    @property
    def success(self) -> bool:
        if self.failed_requests:
            return False
        return not any(event.status == "failed" for event in self.events)

    def summary(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "success": self.success,
            "failed_requests": self.failed_requests,
            "duration": round(self.duration, 3),
            "record_counts": dict(self.record_counts),
            "sources": {name: stats.to_dict() for name, stats in self.source_stats.items()},
            "targets": {name: stats.to_dict() for name, stats in self.target_stats.items()},
            "events": [event.as_dict() for event in self.events],
        }


ClientFactory = Callable[[EndpointContext], ApiClient]


def merge_pulled(pulled: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Merge the results of several pulls into one data set.

    With more than one source every record keeps the name of the source it came
    from, so targets that include the source still see the right one.
    """
    if len(pulled) == 1:
        return dict(pulled[0])

    merged: dict[str, Any] = {"source": ",".join(str(data.get("source")) for data in pulled)}
    for data in pulled:
        for collection, records in data.items():
            if collection == "source":
                continue
            bucket = merged.setdefault(collection, [])
            for record in records:
                stamped = dict(record)
                stamped.setdefault("source", data.get("source"))
                bucket.append(stamped)
    return merged


class MigrationPipeline:
    """
    Runs one migration from a set of sources into a set of targets.

    Args:
        sources: Source endpoint contexts, pulled in order
        targets: Target endpoint contexts, pushed in order
        transforms: Optional per-collection transforms applied between pull and push
        ids: Restrict API sources to ``get`` requests for these id records
        error_manager: Receives every failure; strict mode aborts on transformation errors
        batch_config: Concurrency and retry settings, defaults to the app config
        client_factory: Builds the HTTP client of a context, mainly for tests
        progress: Optional rich progress display
        run_id: Run id stamped on parsed report executions
        status_map: Status vocabulary for parsed reports
    """

    def __init__(
        self,
        sources: list[EndpointContext],
        targets: list[EndpointContext],
        transforms: Mapping[str, ResourceTransform | Mapping[str, str]] | None = None,
        ids: IdRecords | None = None,
        error_manager: ErrorManager | None = None,
        batch_config: BatchConfig | None = None,
        client_factory: ClientFactory | None = None,
        progress: Progress | None = None,
        run_id: str | None = None,
        status_map: str = "native",
    ):
        self.sources = sources
        self.targets = targets
        self.transforms = transforms or {}
        self.ids = ids
        self.error_manager = error_manager or ErrorManager(strict=get_app_config().strict)
        self.batch_config = batch_config or get_app_config().batch
        self.client_factory = client_factory or self._default_client
        self.progress = progress
        self.run_id = run_id
        self.status_map = status_map
        self.events: list[MigrationEvent] = []
        self._clients: list[ApiClient] = []
        self._tasks: dict[str, TaskID] = {}

    def _default_client(self, ctx: EndpointContext) -> ApiClient:
        return ApiClient(auth=ctx.auth, timeout=self.batch_config.request_timeout)

    def _client(self, ctx: EndpointContext) -> ApiClient:
        client = self.client_factory(ctx)
        self._clients.append(client)
        return client

    def _add_event(
        self,
        phase: MigrationPhase,
        status: str,
        message: str,
        integration: str | None = None,
    ) -> MigrationEvent:
        event = MigrationEvent(phase, status, message, integration)
        self.events.append(event)
        log = logger.error if status == "failed" else logger.info
        log(message, context={"phase": phase.value, "status": status, "integration": integration})
        return event

    def _progress_task(self, label: str) -> Callable[[int, int], None] | None:
        if self.progress is None:
            return None
        task = self.progress.add_task(label, total=None)
        self._tasks[label] = task

        def update(completed: int, total: int) -> None:
            self.progress.update(task, completed=completed, total=total)

        return update

    async def run(self) -> MigrationResult:
        """
        Pull, transform and push.

        Raises:
            TestRelayError: The first failure of any phase, after it has been recorded.
        """
        start_time = time.monotonic()
        with correlation_id() as run_correlation_id:
            result = MigrationResult(correlation_id=run_correlation_id, events=self.events)
            try:
                data = await self._pull(result)
                if self.transforms:
                    data = self._transform(data)
                result.data = data
                result.record_counts = {
                    collection: len(records) for collection, records in data.items() if collection != "source"
                }
                await self._push(data, result)
            except Exception as e:
                if not any(error is e for error in self.error_manager.errors):
                    self.error_manager.add_error(
                        self.error_manager.from_exception(e, context={"correlation_id": run_correlation_id})
                    )
                raise
            finally:
                result.duration = time.monotonic() - start_time
                await self.close()

        logger.info(f"Migration completed in {result.duration:.2f}s", context=result.summary())
        return result

    async def _pull(self, result: MigrationResult) -> dict[str, Any]:
        pulled = []
        for ctx in self.sources:
            self._add_event(MigrationPhase.PULL, "in_progress", f"Pulling from {ctx.name}", ctx.name)
            if ctx.is_api:
                update = self._progress_task(f"Pull {ctx.name}")
                callback = None
                if update is not None:

                    def callback(_resource: str, done: int, total: int, update=update) -> None:
                        update(done, total)

                source = Extractor(
                    ctx,
                    self._client(ctx),
                    progress_callback=callback,
                    batch_config=self.batch_config,
                    error_manager=self.error_manager,
                )
            else:
                source = create_source(ctx, run_id=self.run_id, status_map=self.status_map)
            try:
                data = await source.pull(self.ids)
            except Exception as e:
                self._add_event(MigrationPhase.PULL, "failed", f"Pull from {ctx.name} failed: {e}", ctx.name)
                raise
            result.source_stats[ctx.name] = source.stats
            pulled.append(data)
            message = f"Pulled {source.stats.records} records from {ctx.name}"
            if source.stats.failed_requests:
                message += f", {source.stats.failed_requests} requests failed"
            self._add_event(MigrationPhase.PULL, "completed", message, ctx.name)
        return merge_pulled(pulled)

    def _transform(self, data: dict[str, Any]) -> dict[str, Any]:
        self._add_event(MigrationPhase.TRANSFORM, "in_progress", "Transforming records")
        try:
            transformed = Transformer(self.error_manager).apply(data, self.transforms)
        except Exception as e:
            self._add_event(MigrationPhase.TRANSFORM, "failed", f"Transformation failed: {e}")
            raise
        self._add_event(MigrationPhase.TRANSFORM, "completed", "Transformed records")
        return transformed

    async def _push(self, data: dict[str, Any], result: MigrationResult) -> None:
        for ctx in self.targets:
            self._add_event(MigrationPhase.PUSH, "in_progress", f"Pushing to {ctx.name}", ctx.name)
            loader = Loader(
                ctx,
                self._client(ctx),
                progress_callback=self._progress_task(f"Push {ctx.name}"),
                batch_config=self.batch_config,
            )
            try:
                result.target_stats[ctx.name] = await loader.push(data)
            except Exception as e:
                result.target_stats[ctx.name] = loader.stats
                self._add_event(MigrationPhase.PUSH, "failed", f"Push to {ctx.name} failed: {e}", ctx.name)
                raise
            self._add_event(
                MigrationPhase.PUSH,
                "completed",
                f"Sent {loader.stats.sent} requests to {ctx.name}",
                ctx.name,
            )

    async def close(self) -> None:
        for client in self._clients:
            try:
                await client.close()
            except httpx.HTTPError as e:
                logger.warning(f"Error closing HTTP client: {e}")
        self._clients.clear()
