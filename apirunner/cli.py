"""
Command-line interface for APIRunner.

This module provides the CLI entry point for the installed package.
"""

import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from apirunner import __version__
from apirunner.compiler import (
    Compiler,
    DirectoryPayloadLoader,
    DirectoryScenarioSource,
    MatchMode,
    ScenarioFreezer,
    dependency_hierarchy,
    filter_by_key,
    to_endpoint_list,
    to_tree,
)
from apirunner.config import settings
from apirunner.core.context import ExecutionContext
from apirunner.core.executor import run_job
from apirunner.core.models import JobResult, RunOptions, Scenario
from apirunner.exceptions import APIRunnerError, ConfigurationError
from apirunner.logger import get_logger, setup_logger
from apirunner.storage import SQLiteStore
from apirunner.utils.helpers import format_json_pretty

# Initialize console for rich output
console = Console()
logger = get_logger(__name__)


def setup_cli_logging(verbose: bool = False) -> None:
    """Setup logging for CLI usage."""
    if verbose:
        level = "DEBUG"
        log_format = "simple"
    else:
        level = settings.log_level
        log_format = settings.log_format

    setup_logger(level=level, log_format=log_format)


def build_compiler() -> Compiler:
    """Compiler reading the scenarios of the configured workspace."""
    return Compiler(
        DirectoryScenarioSource(settings.scenarios_dir),
        DirectoryPayloadLoader(settings.payloads_dir),
        ScenarioFreezer(settings.frozen_scenarios_file)
    )


async def compile_scenarios(
    collections: str,
    scenarios: str,
    apis: str,
    key: Optional[str] = None,
    search: bool = False,
    use_frozen: bool = True
) -> List[Scenario]:
    mode = MatchMode.SEARCH if search else MatchMode.EXACT
    compiled = await build_compiler().compile(collections, scenarios, apis, mode, use_frozen)
    return filter_by_key(compiled, key)


def selection_options(func):
    """Options selecting collections, scenarios and endpoints."""
    options = [
        click.option("--collections", "-c", default="all", help="Comma separated collections to run"),
        click.option("--scenarios", "-s", default="all", help="Comma separated scenarios to run"),
        click.option("--apis", "-a", default="all", help="Comma separated endpoints to run"),
        click.option("--key", "-k", default=None, help="Key filter, e.g. endpoint.method=POST"),
        click.option("--search/--exact", default=False, help="Match names as case-insensitive regexes"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
def cli():
    """APIRunner - Declarative API test scenario runner."""
    pass


@cli.command()
@selection_options
@click.option("--variables", default=None, help="Variable overrides as k=v,k2=v2")
@click.option("--systems", default=None, help="System selection as alias=system; default=<system> replaces the default")
@click.option("--sync", is_flag=True, help="Run repeats of async endpoints one after another")
@click.option("--use-frozen/--no-frozen", default=True, help="Use the frozen scenarios when present")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(collections: str, scenarios: str, apis: str, key: Optional[str], search: bool,
        variables: Optional[str], systems: Optional[str], sync: bool, use_frozen: bool, verbose: bool) -> None:
    """Run the selected scenarios."""
    setup_cli_logging(verbose)

    options = RunOptions(variables=variables, systems=systems, sync=sync)
    console.print(Panel(
        f"[bold cyan]APIRunner[/bold cyan]\n"
        f"Version: {__version__}\n"
        f"Workspace: {settings.workspace}\n"
        f"Parallel executors: {settings.max_parallel_executors}",
        title="Configuration",
        border_style="cyan"
    ))

    async def execute() -> JobResult:
        selected = await compile_scenarios(collections, scenarios, apis, key, search, use_frozen)
        store = SQLiteStore(settings.db_path)
        await store.initialize()
        context = ExecutionContext.create(options, response_cache=store, job_store=store)
        try:
            return await run_job(selected, context=context)
        finally:
            await context.transport.close()
            await store.close()

    try:
        result = asyncio.run(execute())
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Execution interrupted by user[/yellow]")
        sys.exit(1)
    except APIRunnerError as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("Unexpected error during execution")
        sys.exit(1)

    print_job_result(result)
    sys.exit(0 if result.passed else 1)


def print_job_result(result: JobResult) -> None:
    """Print the per endpoint results and the job summary."""
    table = Table(title=f"Job {result.job_id}", show_header=True)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Runs", justify="right")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Message", style="dim")

    for scenario in result.scenarios:
        if not scenario.endpoints:
            table.add_row(
                f"{scenario.collection}.{scenario.name}", "0",
                f"[yellow]{scenario.status.value}[/yellow]", "-", scenario.message or ""
            )
        for endpoint in scenario.endpoints:
            status = "[green]PASS[/green]" if endpoint.status else "[red]FAIL[/red]"
            table.add_row(
                endpoint.id,
                str(len(endpoint.executions)),
                status,
                f"{endpoint.time}ms",
                endpoint.message or ""
            )
    console.print(table)

    summary = result.summary
    color = "green" if summary.status else "red"
    console.print(Panel(
        f"Scenarios: {summary.scenarios}\n"
        f"Endpoints: {summary.endpoints_successful}/{summary.endpoints_executed} passed\n"
        f"Assertions: {summary.assertions_successful}/{summary.assertions_processed} passed\n"
        f"Duration: {summary.duration}ms",
        title=f"[bold {color}]{'PASSED' if summary.status else 'FAILED'}[/bold {color}]",
        border_style=color
    ))


@cli.command(name="list")
@selection_options
@click.option("--dependencies", "-d", is_flag=True, help="Show the dependency hierarchy of every endpoint")
@click.option("--format", "output_format", type=click.Choice(["tree", "json"]), default="tree", help="Output format")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def list_endpoints(collections: str, scenarios: str, apis: str, key: Optional[str], search: bool,
                   dependencies: bool, output_format: str, verbose: bool) -> None:
    """List the compiled endpoints."""
    setup_cli_logging(verbose)
    selected = asyncio.run(compile_scenarios(collections, scenarios, apis, key, search))
    endpoints = to_endpoint_list(selected)
    if not endpoints:
        console.print("[yellow]No endpoints found[/yellow]")
        sys.exit(1)

    nodes = dependency_hierarchy(endpoints) if dependencies else to_tree(endpoints)
    if output_format == "json":
        click.echo(format_json_pretty(nodes))
        return

    tree = Tree(f"[bold]{len(endpoints)} endpoint(s)[/bold]")
    _add_nodes(tree, nodes)
    console.print(tree)


def _add_nodes(tree: Tree, nodes: Dict[str, Any]) -> None:
    for label, children in nodes.items():
        branch = tree.add(label)
        if children:
            _add_nodes(branch, children)


@cli.command()
@selection_options
def freeze(collections: str, scenarios: str, apis: str, key: Optional[str], search: bool) -> None:
    """Compile the scenarios and freeze them for faster later runs."""
    setup_cli_logging()

    async def execute() -> int:
        selected = await compile_scenarios(collections, scenarios, apis, key, search, use_frozen=False)
        await ScenarioFreezer(settings.frozen_scenarios_file).freeze(selected)
        return len(selected)

    count = asyncio.run(execute())
    console.print(f"[green]✓ Froze {count} scenario(s)[/green]")
    console.print(f"  Output: {settings.frozen_scenarios_file}")


@cli.command()
def unfreeze() -> None:
    """Remove the frozen scenarios."""
    setup_cli_logging()
    if asyncio.run(ScenarioFreezer(settings.frozen_scenarios_file).unfreeze()):
        console.print("[green]✓ Frozen scenarios removed[/green]")
    else:
        console.print("[yellow]No frozen scenarios found[/yellow]")


@cli.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of jobs to show")
@click.option("--json", "as_json", is_flag=True, help="Print the jobs as JSON")
def jobs(limit: int, as_json: bool) -> None:
    """Show the most recent jobs."""
    setup_cli_logging()

    async def execute():
        store = SQLiteStore(settings.db_path)
        await store.initialize()
        try:
            return await store.list_jobs(limit)
        finally:
            await store.close()

    summaries = asyncio.run(execute())
    if as_json:
        click.echo(json.dumps([summary.model_dump() for summary in summaries], indent=2))
        return

    table = Table(title="Recent jobs", show_header=True)
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Scenarios", justify="right")
    table.add_column("Endpoints", justify="right")
    table.add_column("Assertions", justify="right")
    table.add_column("Duration", justify="right")
    for summary in summaries:
        table.add_row(
            str(summary.job_id),
            "[green]PASS[/green]" if summary.status else "[red]FAIL[/red]",
            str(summary.scenarios),
            f"{summary.endpoints_successful}/{summary.endpoints_executed}",
            f"{summary.assertions_successful}/{summary.assertions_processed}",
            f"{summary.duration}ms"
        )
    console.print(table)


@cli.command()
def version():
    """Show version information."""
    console.print(f"APIRunner version {__version__}")


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
