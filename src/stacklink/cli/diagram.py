"""Diagram generation CLI command."""

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
    type=click.Choice(["mermaid", "dot", "all"]),
    default="mermaid",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("docs/diagrams"),
    help="Output directory",
)
@click.option(
    "--explicit-only",
    is_flag=True,
    help="Omit edges implied by deferred attributes",
)
@click.option(
    "--stdout",
    is_flag=True,
    help="Print to stdout instead of file",
)
@pass_context
def diagram(
    ctx: Context,
    output_format: str,
    output: Path,
    explicit_only: bool,
    stdout: bool,
) -> None:
    """
    Generate topology diagrams.

    Examples:

        # Generate Mermaid diagram
        stacklink diagram

        # Generate DOT diagram of explicit edges to stdout
        stacklink diagram --format dot --explicit-only --stdout
    """
    from stacklink.generators.dot import generate_dot
    from stacklink.generators.mermaid import generate_mermaid

    snapshot = ctx.snapshot

    generators = {
        "mermaid": (generate_mermaid, "topology.md"),
        "dot": (generate_dot, "topology.dot"),
    }

    formats_to_generate = list(generators.keys()) if output_format == "all" else [output_format]

    for fmt in formats_to_generate:
        generator, filename = generators[fmt]
        content = generator(snapshot, include_implied=not explicit_only)

        if stdout:
            click.echo(content)
        else:
            output.mkdir(parents=True, exist_ok=True)
            output_file = output / filename
            output_file.write_text(content)
            console.print(f"[green]Generated:[/green] {output_file}")

    if not stdout:
        console.print(f"\n[bold]Diagrams written to:[/bold] {output}")
