# deck/components/cli/custom.py
"""
CLI commands for the Custom layer: editable configurations copied from Templates.
"""
import asyncio
from typing import List, Optional

import typer
from rich.table import Table

from deck.components.catalog.resources import CleaningOptionId
from deck.components.cli.images import run_cleaning
from deck.components.cli.main import parse_variables
from deck.components.cli.rendering import console, exit_on_failure, print_warnings
from deck.orchestrator import orchestrator

# Create the Typer app for custom configuration commands
app = typer.Typer(help="List, create and clean Custom configurations")


@app.command("list")
def list_custom():
    """List Custom configurations and the Images built from them."""
    result = asyncio.run(orchestrator.list_custom())
    exit_on_failure(result)
    if not result.configs:
        console.print("[yellow]No Custom configurations yet. Create one with 'deck custom create <template>'.[/yellow]")
        return

    table = Table(title="Custom Configurations")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Images")
    table.add_column("Variables", justify="right")
    table.add_column("Modified")
    for config in result.configs:
        artifact = config.artifact
        table.add_row(
            artifact.name,
            config.source or "",
            "\n".join(config.images),
            str(len(artifact.variables)),
            artifact.modified_at.strftime("%Y-%m-%d %H:%M") if artifact.modified_at else "",
        )
    console.print(table)
    console.print("[dim]Build one with 'deck start --custom <name>'[/dim]")


@app.command("create")
def create_custom(
    template: str = typer.Argument(..., help="Template to copy"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the new configuration"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Use cached templates without syncing"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="Template variable as KEY=VALUE (repeatable)"),
):
    """Copy a Template into a new Custom configuration to edit before building."""
    result = asyncio.run(orchestrator.create_custom(
        template, name=name, sync=not no_sync, variables=parse_variables(var)
    ))
    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")
    if result.chain:
        console.print(" -> ".join(result.chain))
    console.print(f"[dim]Build and start it with 'deck start --custom {result.custom_name}'[/dim]")
    print_warnings(result)


@app.command("clean")
def clean_custom():
    """Choose Custom configurations to remove; Images built from them are kept."""
    run_cleaning(CleaningOptionId.CUSTOM_SELECTIVE, yes=False)
