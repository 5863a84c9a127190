"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Command line interface for TestRelay.
"""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from testrelay import __version__
from testrelay.config_loader import build_pipe_contexts, load_integration_config
from testrelay.core.config import init_app_config
from testrelay.core.logging import get_logger, log_operation
from testrelay.dependency_graph import placeholder_resource, resolve_fetch_order
from testrelay.exceptions import ConfigurationError, TestRelayError
from testrelay.junit_parser import parse_report
from testrelay.models import DEFAULT_ACTIONS, ApiIntegrationConfig, Direction
from testrelay.orchestrator import MigrationPipeline, MigrationResult
from testrelay.report_models import STATUS_MAPS
from testrelay.url_template import find_placeholders

# Initialize console for rich output
console = Console()

# Initialize the CLI app
app = typer.Typer(help="TestRelay - move test data between test-management services")

logger = get_logger("testrelay.cli")


def configure_app(debug: bool = False, strict: bool = False):
    """
    Configure the application with the specified settings.

    Args:
    ----
        debug: Whether to enable debug mode
        strict: Whether transformation errors abort the migration

    """
    config = init_app_config(debug=debug, strict=strict)
    config.configure_logging()
    return config


@app.callback()
def callback(
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode with verbose logging"),
    version: bool = typer.Option(False, "--version", help="Show the application version and exit"),
):
    """
    TestRelay - pull test data from one service and push it to another.

    Use --debug to enable verbose logging.
    """
    if version:
        console.print(f"TestRelay version: {__version__}")
        raise typer.Exit()

    configure_app(debug=debug)


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_ids(ids_file: Path | None) -> dict | None:
    if ids_file is None:
        return None
    try:
        with open(ids_file, encoding="utf-8") as f:
            ids = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read id records from {ids_file}: {e}") from e
    if not isinstance(ids, dict):
        raise ConfigurationError(f"Id records in {ids_file} must be an object of resource lists")
    return ids


def _print_events(pipeline: MigrationPipeline) -> None:
    table = Table(title="Migration Timeline")
    table.add_column("Time")
    table.add_column("Phase")
    table.add_column("Integration")
    table.add_column("Status")
    table.add_column("Message")

    styles = {"completed": "green", "failed": "red", "in_progress": "yellow"}
    for event in pipeline.events:
        table.add_row(
            event.timestamp.strftime("%H:%M:%S"),
            event.phase.value,
            event.integration or "-",
            f"[{styles.get(event.status, 'white')}]{event.status}[/]",
            event.message,
        )
    console.print(table)


def _print_result(result: MigrationResult) -> None:
    pulls = Table(title="Pull Summary")
    pulls.add_column("Source")
    pulls.add_column("Requests", justify="right")
    pulls.add_column("Failed", justify="right")
    pulls.add_column("Ignored", justify="right")
    pulls.add_column("Records", justify="right")
    for name, stats in result.source_stats.items():
        failed = f"[red]{stats.failed_requests}[/]" if stats.failed_requests else "0"
        pulls.add_row(name, str(stats.requests), failed, str(stats.ignored_records), str(stats.records))
    console.print(pulls)

    counts = Table(title="Records Pulled")
    counts.add_column("Collection")
    counts.add_column("Records", justify="right")
    for collection, count in sorted(result.record_counts.items()):
        counts.add_row(collection, str(count))
    console.print(counts)

    targets = Table(title="Push Summary")
    targets.add_column("Target")
    targets.add_column("Planned", justify="right")
    targets.add_column("Sent", justify="right")
    targets.add_column("Failed", justify="right")
    targets.add_column("Skipped", justify="right")
    for name, stats in result.target_stats.items():
        targets.add_row(
            name,
            str(stats.planned),
            str(stats.sent),
            str(stats.failed),
            str(stats.skipped_records),
        )
    console.print(targets)


@app.command("migrate")
def migrate(
    source: str = typer.Option(..., "--source", "-s", help="Source integrations, comma separated"),
    target: str = typer.Option(..., "--target", "-t", help="Target integrations, comma separated"),
    credentials: Path | None = typer.Option(
        None,
        help="JSON file of {integration: {source|target: {...}}} credentials",
    ),
    ignore: Path | None = typer.Option(None, help="JSON file of {resource: {field: [regex]}} filters"),
    overrides: str | None = typer.Option(None, help="JSON object of {resource: {field: value}} overrides"),
    data_types: str | None = typer.Option(None, help="Resources to migrate, comma separated"),
    ids: Path | None = typer.Option(None, help="JSON file of id records to fetch instead of indexing"),
    run_id: str | None = typer.Option(None, help="Run id for executions parsed from reports"),
    status_map: str = typer.Option("native", help="Status vocabulary for parsed reports"),
    no_git: bool = typer.Option(False, "--no-git", help="Do not attach git source-control details"),
    strict: bool = typer.Option(False, "--strict", help="Abort on the first transformation error"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode with verbose logging"),
    summary_file: Path | None = typer.Option(None, help="Write the migration summary to this JSON file"),
):
    """
    Pull data from the sources and push it to the targets.
    """
    configure_app(debug=debug, strict=strict)
    try:
        sources, targets = build_pipe_contexts(
            source,
            target,
            credentials=str(credentials) if credentials else None,
            ignore=ignore,
            overrides=overrides,
            data_types=_split(data_types),
            no_git=no_git,
        )
        id_records = _load_ids(ids)
    except ConfigurationError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(code=1)

    console.print(
        f"Migrating from [bold]{', '.join(ctx.name for ctx in sources)}[/] "
        f"to [bold]{', '.join(ctx.name for ctx in targets)}[/]"
    )

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        pipeline = MigrationPipeline(
            sources,
            targets,
            ids=id_records,
            progress=progress,
            run_id=run_id,
            status_map=status_map,
        )
        try:
            result = asyncio.run(pipeline.run())
        except TestRelayError as e:
            failure = e
        else:
            failure = None

    _print_events(pipeline)
    if failure is not None:
        console.print(f"Error: {failure}", style="red")
        raise typer.Exit(code=1)

    _print_result(result)
    if summary_file:
        with open(summary_file, "w", encoding="utf-8") as f:
            json.dump(result.summary(), f, indent=2)
        console.print(f"Summary written to {summary_file}", style="green")
    if not result.success:
        for stats in result.source_stats.values():
            for url in stats.failed_urls:
                console.print(f"Failed request: {url}", style="red")
        console.print(f"Migration finished with failures in {result.duration:.2f}s", style="red")
        raise typer.Exit(code=1)
    console.print(f"Migration completed in {result.duration:.2f}s", style="green")


@app.command("parse-report")
def parse_report_command(
    file: Path = typer.Argument(..., help="Path to the JUnit XML report"),
    run_id: str | None = typer.Option(None, help="Run id to stamp on executions"),
    status_map: str = typer.Option("native", help="Status vocabulary (native, testrail)"),
    output: Path | None = typer.Option(None, help="Write the parsed report to this JSON file"),
):
    """
    Parse a JUnit XML report and show its suites.
    """
    if status_map not in STATUS_MAPS:
        console.print(
            f"Error: unknown status map '{status_map}', expected one of {', '.join(sorted(STATUS_MAPS))}",
            style="red",
        )
        raise typer.Exit(code=1)

    try:
        with log_operation(logger, f"parsing {file.name}", context={"path": str(file)}) as op:
            result = parse_report(file, status_map=STATUS_MAPS[status_map], run_id=run_id)
            op["testcases"] = len(result.testcases)
    except TestRelayError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(code=1)

    table = Table(title=f"Suites in {file.name}")
    table.add_column("Suite")
    table.add_column("Tests", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Time", justify="right")
    for suite in result.suites:
        table.add_row(
            suite.name,
            str(suite.tests),
            str(suite.failures),
            str(suite.errors),
            str(suite.skipped),
            f"{suite.time:.3f}",
        )
    console.print(table)
    console.print(
        f"Run {result.run_id}: {len(result.testcases)} test cases, {len(result.executions)} executions"
    )

    if output:
        with open(output, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        console.print(f"Parsed report written to {output}", style="green")


@app.command("fetch-order")
def fetch_order(
    integration: str = typer.Argument(..., help="Integration name or config path"),
    direction: Direction = typer.Option(Direction.SOURCE, help="Direction whose resources are resolved"),
    data_types: str | None = typer.Option(None, help="Resources to resolve, comma separated"),
):
    """
    Show the order in which an integration's resources are requested.
    """
    try:
        config = load_integration_config(integration)
        if not isinstance(config, ApiIntegrationConfig):
            console.print(f"Integration '{config.name}' is a {config.type} file and has no endpoints")
            return

        graph = config.resources(direction)
        action = DEFAULT_ACTIONS[direction]
        # Placeholders that no resource provides come from credentials, overrides or the records
        supplied = {
            placeholder_resource(placeholder)
            for resource in graph.values()
            for endpoint in resource.endpoints.values()
            for placeholder in find_placeholders(endpoint.template)
            if placeholder_resource(placeholder) not in graph
        }
        order = resolve_fetch_order(graph, _split(data_types) or list(graph), action, supplied)
    except ConfigurationError as e:
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(code=1)

    table = Table(title=f"{config.name} {direction.value} fetch order")
    table.add_column("#", justify="right")
    table.add_column("Resource")
    table.add_column("Path")
    table.add_column("Depends on")
    for position, resource in enumerate(order, start=1):
        endpoint = graph[resource].endpoint(action)
        path = endpoint.template if endpoint is not None else "-"
        prerequisites = sorted(
            {placeholder_resource(p) for p in find_placeholders(path)} & set(graph)
        )
        table.add_row(str(position), resource, path, ", ".join(prerequisites) or "-")
    console.print(table)


@app.command("version")
def version():
    """
    Show the application version.
    """
    console.print(f"TestRelay version: {__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
