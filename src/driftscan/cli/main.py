"""Main CLI entry point."""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from driftscan import __version__
from driftscan.config.parser import Config, DEFAULT_CONFIG_FILE
from driftscan.orchestrator.dependency_graph import DependencyGraph
from driftscan.orchestrator.orchestrator import ScanOrchestrator
from driftscan.orchestrator.planner import ReconciliationPlan
from driftscan.report import EXIT_CLEAN, EXIT_DRIFT, EXIT_ERROR, render_summary
from driftscan.state.store import StateStore
from driftscan.utils.errors import ConfigurationError, ScanError
from driftscan.utils.logging import get_logger, setup_logging

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


@click.group()
@click.version_option(__version__, prog_name="driftscan")
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_FILE, help='Path to configuration file')
@click.option('--log-level', default='warning', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-dir', help='Directory for JSON-lines log files')
@click.pass_context
def cli(ctx, config_path, log_level, log_dir):
    """Drift reconciliation scanner."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['log_level'] = log_level
    ctx.obj['log_dir'] = log_dir

    setup_logging(log_level, log_dir)


def load_config(ctx: click.Context) -> Config:
    """Load and validate the configuration file, exiting with 1 on failure."""
    config_path = ctx.obj['config_path']
    try:
        config = Config(config_path).load()
    except ConfigurationError as e:
        err_console.print("[red]Configuration error:[/red]")
        err_console.print(str(e))
        for suggestion in e.suggestions:
            err_console.print(f"  [dim]- {suggestion}[/dim]")
        ctx.exit(EXIT_ERROR)

    # File logging configured in driftscan.yaml applies unless --log-dir was given
    if not ctx.obj['log_dir'] and config.scanner.log_dir:
        setup_logging(ctx.obj['log_level'], config.resolve_path(config.scanner.log_dir))

    return config


def _print_error(error: ScanError) -> None:
    err_console.print(f"[red]{error.code}:[/red] {error.message}")
    if error.context.resource_id:
        err_console.print(f"  Resource: {error.context.resource_id}")
    for suggestion in error.suggestions:
        err_console.print(f"  [dim]- {suggestion}[/dim]")


@cli.command()
@click.option('--env', 'envs', multiple=True, help='Environment to scan (repeatable, default: all)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json', 'yaml']), default='table',
              help='Output format')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the report to a file')
@click.pass_context
def scan(ctx, envs: Tuple[str, ...], output_format: str, output: Optional[str]):
    """Scan environments for drift.

    Exits with 0 when clean, 2 when drift was found and 1 on any error.
    """
    config = load_config(ctx)
    orchestrator = ScanOrchestrator(config)

    try:
        report = orchestrator.scan(list(envs) or None)
    except KeyboardInterrupt:
        err_console.print("[yellow]Scan cancelled[/yellow]")
        ctx.exit(EXIT_ERROR)

    if output:
        fmt = 'yaml' if output_format == 'yaml' or Path(output).suffix in ('.yaml', '.yml') else 'json'
        Path(output).write_text(report.render(fmt))
        err_console.print(f"[dim]Report written to {output}[/dim]")

    if output_format == 'table':
        render_summary(report, console)
    elif not output:
        click.echo(report.render(output_format))

    ctx.exit(report.exit_code())


@cli.command()
@click.option('--env', required=True, help='Environment name')
@click.pass_context
def plan(ctx, env: str):
    """Show the ordered reconciliation plan for one environment.

    The environment lock is held while the plan is built and released when
    the command exits.
    """
    config = load_config(ctx)
    orchestrator = ScanOrchestrator(config)

    try:
        result = orchestrator.analyze(env)
    except ScanError as e:
        _print_error(e)
        ctx.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        orchestrator.cancel()
        err_console.print("[yellow]Plan cancelled[/yellow]")
        ctx.exit(EXIT_ERROR)

    if result.plan is None:
        console.print(Panel.fit(
            f"[green]No drift detected in {env}[/green]",
            border_style="green"
        ))
        ctx.exit(EXIT_CLEAN)

    try:
        _print_plan(result.plan)
    finally:
        result.plan.release()
    ctx.exit(EXIT_DRIFT)


def _print_plan(plan: ReconciliationPlan) -> None:
    summary = plan.get_summary()
    console.print(Panel.fit(
        f"[bold]Reconciliation plan: {plan.environment.name}[/bold]\n"
        f"Lock token: {plan.lock_token}\n"
        f"[green]{summary['create']} to create[/green], "
        f"[yellow]{summary['update']} to update[/yellow], "
        f"[red]{summary['delete']} to delete[/red]",
        border_style="blue"
    ))

    for number, wave in enumerate(plan.waves, 1):
        table = Table(title=f"Wave {number}", show_header=True, header_style="bold cyan")
        table.add_column("Resource", style="cyan")
        table.add_column("Action")
        table.add_column("Changed fields")
        table.add_column("Waits for", style="dim")

        for resource_id in wave:
            step = plan.get_step(resource_id)
            color = {'create': 'green', 'update': 'yellow', 'delete': 'red'}[step.action.value]
            table.add_row(
                step.resource_id,
                f"[{color}]{step.action.value}[/{color}]",
                ", ".join(step.record.field_diffs) or "-",
                ", ".join(step.depends_on) or "-",
            )
        console.print(table)


@cli.command()
@click.option('--env', required=True, help='Environment name')
@click.pass_context
def graph(ctx, env: str):
    """Show the dependency graph of an environment."""
    config = load_config(ctx)
    store = StateStore(config.environments)

    try:
        environment = store.read(env)
        dep_graph = DependencyGraph.from_environment(environment)
        waves = dep_graph.get_waves()
    except ScanError as e:
        _print_error(e)
        ctx.exit(EXIT_ERROR)

    tree = Tree(f"[bold blue]{env}[/bold blue] ({dep_graph.size()} resources)")
    for root in dep_graph.roots():
        _add_dependents(tree, dep_graph, root, set())
    console.print(tree)

    console.print()
    for number, wave in enumerate(waves, 1):
        console.print(f"[bold]Wave {number}:[/bold] {', '.join(wave)}")


def _add_dependents(parent: Tree, dep_graph: DependencyGraph, resource_id: str, path: set) -> None:
    branch = parent.add(f"[cyan]{resource_id}[/cyan]")
    path = path | {resource_id}
    for dependent in dep_graph.get_dependents(resource_id):
        if dependent not in path:
            _add_dependents(branch, dep_graph, dependent, path)


@cli.command()
@click.pass_context
def envs(ctx):
    """List configured environments."""
    config = load_config(ctx)

    table = Table(title="Environments", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Region")
    table.add_column("Provider")
    table.add_column("Declared")
    table.add_column("Snapshot", style="dim")

    for name in config.list_environments():
        env_config = config.get_environment(name)
        table.add_row(
            name,
            env_config.region,
            env_config.provider.type,
            env_config.declared,
            env_config.state or "-",
        )
    console.print(table)


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == '__main__':
    sys.exit(main())
