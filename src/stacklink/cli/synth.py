"""Synthesis CLI command."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from stacklink.cli.main import Context, pass_context

console = Console()


@click.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["json", "yaml"]),
    default="json",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output directory (defaults to the configured output_dir)",
)
@click.option(
    "--stdout",
    is_flag=True,
    help="Print to stdout instead of file",
)
@pass_context
def synth(ctx: Context, output_format: str, output: Path | None, stdout: bool) -> None:
    """
    Synthesize the finalized topology for the provisioning engine.

    Examples:

        # Write cdk.out/localstack.topology.json
        stacklink synth

        # Print YAML to stdout
        stacklink synth --format yaml --stdout
    """
    snapshot = ctx.snapshot

    if stdout:
        click.echo(snapshot.to_yaml() if output_format == "yaml" else snapshot.to_json())
        return

    output = output or ctx.settings.output_dir
    suffix = "yaml" if output_format == "yaml" else "json"
    path = snapshot.dump(output / f"{snapshot.name}.topology.{suffix}")
    console.print(f"[green]Synthesized:[/green] {path}")
    console.print(f"  {len(snapshot)} nodes, {len(snapshot.edges)} edges")
