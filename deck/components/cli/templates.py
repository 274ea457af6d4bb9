# deck/components/cli/templates.py
"""
CLI commands for the Template layer.
"""
import asyncio

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from deck.components.cli.rendering import console, exit_on_failure, print_warnings
from deck.orchestrator import orchestrator

# Create the Typer app for template commands
app = typer.Typer(help="List and sync Templates")


@app.command("list")
def list_templates():
    """List the locally available Templates."""
    templates = orchestrator.list_templates()
    if not templates:
        console.print("[yellow]No templates found. Run 'deck templates sync'.[/yellow]")
        return
    table = Table(title="Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Files", style="dim")
    for template in templates:
        table.add_row(template.name, template.description, ", ".join(template.files))
    console.print(table)


@app.command("sync")
def sync_templates(
    force: bool = typer.Option(False, "--force", "-f", help="Sync even if templates were synced recently"),
):
    """Replace local Templates with the remote repository's."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]Syncing templates...[/bold blue]"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Syncing", total=None)
        result = asyncio.run(orchestrator.sync_templates(force=force))

    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")
    if result.synced and not result.skipped:
        console.print(f"Synced: {', '.join(result.synced)}")
    if result.removed:
        console.print(f"[yellow]Removed: {', '.join(result.removed)}[/yellow]")
    print_warnings(result)
