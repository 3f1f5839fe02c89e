"""
CLI interface for the usage gateway.

Provides command-line access to directory management, one-off collection
runs and the HTTP server.
"""

import asyncio
import json
import sys
from dataclasses import replace
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from usage_gateway.config.loader import DatabaseConfig, GatewayConfig, load_gateway_config_from_env
from usage_gateway.core.aggregator import AggregatedReport
from usage_gateway.core.collection import collect_usage
from usage_gateway.core.metrics import InvalidMetricsError
from usage_gateway.core.outcomes import TaskSuccess
from usage_gateway.core.tasks import (
    DEFAULT_LIMIT,
    CollectionRequest,
    EmptyDirectoryError,
    InvalidRequestError,
    NoMatchingProjectsError,
)
from usage_gateway.logging_setup import configure_logging
from usage_gateway.storage.directory import DirectoryError, TenantDirectory
from usage_gateway.storage.events import EventStore
from usage_gateway.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_DB_HELP = "SQLite database path (overrides configuration)"


def _load_config(db: Optional[str]) -> GatewayConfig:
    """Load configuration from the environment, apply --db and set up logging."""
    config = load_gateway_config_from_env()
    if db:
        config = replace(config, database=DatabaseConfig(path=db))
    configure_logging(config.logging.level, config.logging.json)
    return config


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Tenant usage gateway CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Usage Gateway - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP)):
    """Initialize the gateway database."""
    try:
        config = _load_config(db)
        initialize_schema(config.database.path)
        console.print(f"[green]✓[/] Database initialized at {config.database.path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP)):
    """Show directory and ledger counts."""
    try:
        config = _load_config(db)
        directory = TenantDirectory(config.database.path).count_entries()
        ledger = get_repository(config.database.path).count_ledger()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        console.print("Run `usage-gateway init` to initialize the database")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Usage Gateway Status")
    table.add_column("Item")
    table.add_column("Count", justify="right")
    table.add_row("Tenants", str(directory["tenants"]))
    table.add_row("Active projects", str(directory["active_projects"]))
    table.add_row("Usage rows", str(ledger["usage_rows"]))
    table.add_row("Pulls succeeded", str(ledger["pulls_succeeded"]))
    table.add_row("Pulls failed", str(ledger["pulls_failed"]))
    table.add_row("Events", str(ledger["events"]))
    console.print(table)


@app.command("add-tenant")
def add_tenant(
    slug: str = typer.Argument(..., help="Unique tenant slug"),
    name: str = typer.Argument(..., help="Tenant display name"),
    api_key: str = typer.Option(..., "--api-key", help="Analytics API key for this tenant"),
    environment_id: Optional[str] = typer.Option(
        None, "--environment-id", help="Default analytics environment"
    ),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """Register a tenant and its analytics credential."""
    config = _load_config(db)
    try:
        tenant = TenantDirectory(config.database.path).add_tenant(slug, name, api_key, environment_id)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Tenant {tenant.slug} created ({tenant.id})")


@app.command("add-project")
def add_project(
    slug: str = typer.Argument(..., help="Tenant slug"),
    project_id: str = typer.Argument(..., help="Analytics project id"),
    display_name: Optional[str] = typer.Option(None, "--display-name", help="Project label"),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """Register an analytics project for a tenant."""
    config = _load_config(db)
    try:
        project = TenantDirectory(config.database.path).add_project(slug, project_id, display_name)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Project {project.project_id} added to {slug}")


@app.command("issue-token")
def issue_token(
    slug: str = typer.Argument(..., help="Tenant slug"),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """Create an event write token for a tenant and print it."""
    config = _load_config(db)
    tenant = TenantDirectory(config.database.path).get_tenant(slug)
    if tenant is None:
        console.print(f"[red]Error:[/] Unknown tenant: {slug}")
        sys.exit(EXIT_CODE_FAIL)
    token = EventStore(config.database.path).issue_write_token(tenant.id)
    console.print(token.token)


@app.command("allow-origin")
def allow_origin(
    slug: str = typer.Argument(..., help="Tenant slug"),
    origin: str = typer.Argument(..., help="Browser origin, e.g. https://app.example.com"),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """Allow a browser origin to post events for a tenant."""
    config = _load_config(db)
    tenant = TenantDirectory(config.database.path).get_tenant(slug)
    if tenant is None:
        console.print(f"[red]Error:[/] Unknown tenant: {slug}")
        sys.exit(EXIT_CODE_FAIL)
    EventStore(config.database.path).add_allowed_origin(tenant.id, origin)
    console.print(f"[green]✓[/] {origin} allowed for {slug}")


@app.command()
def collect(
    tenant: Optional[List[str]] = typer.Option(None, "--tenant", "-t", help="Tenant slug filter"),
    project: Optional[List[str]] = typer.Option(None, "--project", "-p", help="Project id filter"),
    metric: Optional[List[str]] = typer.Option(None, "--metric", "-m", help="Metric to collect"),
    start: Optional[str] = typer.Option(None, "--start", help="Window start (ISO-8601)"),
    end: Optional[str] = typer.Option(None, "--end", help="Window end (ISO-8601)"),
    limit: int = typer.Option(DEFAULT_LIMIT, "--limit", "-l", help="Result limit per query"),
    environment_id: Optional[str] = typer.Option(
        None, "--environment-id", help="Environment override for every query"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON"),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """
    Run one usage collection across the tenant directory.

    Every matching (tenant, project, metric) is queried concurrently. Failed
    queries are recorded in the pull log; the command exits non-zero only
    when every query failed or the input is invalid.
    """
    config = _load_config(db)
    request = CollectionRequest(
        tenant_slugs=tuple(tenant or ()),
        project_ids=tuple(project or ()),
        metrics=tuple(metric or ()),
        start_time=start,
        end_time=end,
        limit=limit,
        environment_id=environment_id,
    )

    try:
        report = asyncio.run(collect_usage(config, request))
    except (InvalidMetricsError, InvalidRequestError) as e:
        console.print(f"[red]Invalid input:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except EmptyDirectoryError:
        console.print("\n[bold yellow]No active tenant projects found[/]")
        console.print("\nTo get started:")
        console.print("1. Run `usage-gateway init` to initialize the database")
        console.print("2. Run `usage-gateway add-tenant` and `usage-gateway add-project`")
        console.print("3. Run this command again\n")
        sys.exit(EXIT_CODE_FAIL)
    except NoMatchingProjectsError as e:
        console.print(f"[yellow]{str(e)}[/]")
        sys.exit(EXIT_CODE_FAIL)
    except DirectoryError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if as_json:
        console.print_json(json.dumps(report.to_dict(), default=str))
    else:
        _display_report(report)

    if report.succeeded_count == 0:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8080, "--port", help="Bind port"),
    db: Optional[str] = typer.Option(None, "--db", help=_DB_HELP),
):
    """Run the HTTP API under uvicorn."""
    import uvicorn

    from usage_gateway.api.app import create_app

    config = _load_config(db)
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def _display_report(report: AggregatedReport):
    """Display a collection report as a table plus summary."""
    console.print("\n[bold]Usage Collection Result[/bold]")
    console.print(f"Window: {report.window.start_time} → {report.window.end_time}")
    console.print(
        f"Tenants: {report.tenant_count}  Projects: {report.project_count}  "
        f"Succeeded: {report.succeeded_count}/{len(report.results)}"
    )

    table = Table()
    table.add_column("Tenant")
    table.add_column("Project")
    table.add_column("Metric")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")

    for outcome in report.results:
        task = outcome.task
        if isinstance(outcome, TaskSuccess):
            status_cell = "[green]fulfilled[/]"
            detail = ""
        else:
            status_cell = "[red]rejected[/]"
            detail = outcome.message if outcome.status is None else f"{outcome.status}: {outcome.message}"
        if outcome.persistence_error:
            detail = f"{detail} (not persisted: {outcome.persistence_error})".strip()
        table.add_row(task.tenant.slug, task.project_id, task.metric.value, status_cell, detail)

    console.print(table)


if __name__ == "__main__":
    app()
