"""Main CLI entry point for stacklink."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
import structlog
import yaml
from rich.console import Console

from stacklink import __version__

console = Console()


class Context:
    """CLI context object passed to commands."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self.verbose: bool = False
        self._settings: Any = None
        self._snapshot: Any = None

    @property
    def settings(self) -> Any:
        """Lazy-load settings."""
        if self._settings is None:
            from pydantic import ValidationError

            from stacklink.config import load_settings

            if self.config_path and not self.config_path.exists():
                raise click.ClickException(f"Config not found: {self.config_path}")
            try:
                self._settings = load_settings(self.config_path)
            except (ValidationError, TypeError, yaml.YAMLError) as e:
                raise click.ClickException(f"Invalid config {self.config_path}: {e}")
        return self._settings

    @property
    def snapshot(self) -> Any:
        """Lazy-build and finalize the topology."""
        if self._snapshot is None:
            from stacklink.compose import compose_topology
            from stacklink.core.errors import TopologyError

            try:
                self._snapshot = compose_topology(self.settings)
            except TopologyError as e:
                raise click.ClickException(f"Topology build failed: {e}")
        return self._snapshot


pass_context = click.make_pass_decorator(Context, ensure=True)


def configure_logging(verbose: bool) -> None:
    """Send structlog output to stderr; debug when verbose, warnings otherwise."""
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


@click.group()
@click.version_option(version=__version__, prog_name="stacklink")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to settings YAML file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@pass_context
def cli(ctx: Context, config: Path | None, verbose: bool) -> None:
    """
    Stacklink - Deployment topology graphs.

    Build the deployment topology, inspect its dependency graph and
    synthesize it for the provisioning engine.
    """
    ctx.config_path = config
    ctx.verbose = verbose
    configure_logging(verbose)


# Import and register subcommands
from stacklink.cli.diagram import diagram
from stacklink.cli.synth import synth

cli.add_command(diagram)
cli.add_command(synth)


@cli.command()
@pass_context
def info(ctx: Context) -> None:
    """Show topology summary."""
    from rich.table import Table

    from stacklink.core.schema import NodeKind

    snapshot = ctx.snapshot

    console.print(f"\n[bold]Stacklink v{__version__}[/bold]\n")
    console.print("[bold cyan]Topology Summary[/bold cyan]")
    console.print(f"  Stack: {snapshot.name}")
    console.print(f"  Total nodes: {len(snapshot)}")
    console.print(f"  Explicit edges: {len(snapshot.explicit_edges())}")
    console.print(f"  Implied edges: {len(snapshot.implied_edges())}")
    console.print(f"  Provisioning waves: {len(snapshot.provisioning_waves())}")

    table = Table(title="Nodes by Kind")
    table.add_column("Kind", style="cyan")
    table.add_column("Count", justify="right")
    for kind in NodeKind:
        count = len(snapshot.by_kind(kind))
        if count > 0:
            table.add_row(kind.value, str(count))
    console.print(table)


@cli.command()
@pass_context
def nodes(ctx: Context) -> None:
    """List all nodes in the topology."""
    from rich.table import Table

    snapshot = ctx.snapshot

    table = Table(title="Topology Nodes")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Depends on")
    table.add_column("Outputs", style="dim")

    for node in snapshot:
        deps = snapshot.dependencies_of(node.id)
        table.add_row(
            node.id,
            node.kind.value,
            ", ".join(deps) or "-",
            ", ".join(sorted(node.outputs)),
        )

    console.print(table)


@cli.command()
@pass_context
def order(ctx: Context) -> None:
    """Show provisioning waves (nodes in a wave may be provisioned concurrently)."""
    snapshot = ctx.snapshot
    for i, wave in enumerate(snapshot.provisioning_waves(), start=1):
        console.print(f"[bold]Wave {i}[/bold]: {', '.join(wave)}")


@cli.command()
@click.argument("node_id")
@pass_context
def deps(ctx: Context, node_id: str) -> None:
    """List every node NODE_ID transitively depends on."""
    snapshot = ctx.snapshot
    if node_id not in snapshot:
        console.print(f"[red]Error:[/red] Node not found: {node_id}")
        raise SystemExit(1)

    direct = set(snapshot.dependencies_of(node_id))
    reachable = snapshot.reachable_from(node_id)
    for dep in snapshot.topological_order():
        if dep in reachable:
            marker = "[green]direct[/green]" if dep in direct else "[dim]transitive[/dim]"
            console.print(f"  {dep} ({marker})")


@cli.command()
@click.argument("unit_id")
@pass_context
def env(ctx: Context, unit_id: str) -> None:
    """Show the environment map of a unit, deferred values as ${node.attribute}."""
    from rich.table import Table

    from stacklink.core.errors import DanglingReferenceError
    from stacklink.core.schema import DeferredAttribute, DeferredFormat

    snapshot = ctx.snapshot
    try:
        environment = snapshot.environment_of(unit_id)
    except DanglingReferenceError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    table = Table(title=f"{unit_id} environment")
    table.add_column("Variable", style="cyan")
    table.add_column("Value")
    for name, value in environment.items():
        if isinstance(value, (DeferredAttribute, DeferredFormat)):
            table.add_row(name, f"[yellow]{value}[/yellow]")
        else:
            table.add_row(name, value)
    console.print(table)


if __name__ == "__main__":
    cli()
