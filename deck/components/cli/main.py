# deck/components/cli/main.py
"""
Main command-line interface for Deck.
"""
import asyncio
import subprocess
import sys
from typing import Dict, List, Optional

import typer
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Prompt
from rich.table import Table

from deck import __version__, init_application
from deck.api.safety import get_protected_confirmation
from deck.components.cli.rendering import (
    console,
    containers_table,
    exit_on_failure,
    print_conflicts,
    print_failure,
    print_ports,
    print_warnings,
)
from deck.core.environments import EnvironmentType, Layer
from deck.orchestrator import SelectableItem, orchestrator
from deck.utils.logging import get_logger

# Create the app
app = typer.Typer(help="Deck: three-layer containerized development environments")
logger = get_logger(__name__)

LAYER_TITLES = {Layer.IMAGE: "Images", Layer.CUSTOM: "Custom", Layer.TEMPLATE: "Templates"}


def version_callback(value: bool):
    """Display version information and exit."""
    if value:
        console.print(f"Deck version: {__version__}")
        sys.exit(0)


def parse_environment(value: str) -> EnvironmentType:
    try:
        return EnvironmentType.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_variables(values: Optional[List[str]]) -> Dict[str, str]:
    """Turn repeated ``KEY=VALUE`` options into a mapping."""
    variables: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'")
        variables[key.strip()] = value
    return variables


def choose_start_target(items: List[SelectableItem]) -> SelectableItem:
    """Show Images, Custom configurations and Templates as one numbered menu."""
    table = Table(title="What do you want to start?")
    table.add_column("#", justify="right")
    table.add_column("Layer", style="magenta")
    table.add_column("Name", style="cyan")
    for index, item in enumerate(items, 1):
        label = item.label
        if item.protected:
            label = f"[red]{label} (protected)[/red]"
        if not item.available:
            label += " [yellow](incomplete)[/yellow]"
        table.add_row(str(index), LAYER_TITLES[item.layer], label)
    console.print(table)
    choice = Prompt.ask(
        "Choose a number",
        choices=[str(i) for i in range(1, len(items) + 1)],
        console=console,
    )
    return items[int(choice) - 1]


@app.callback()
def main(
    debug: bool = typer.Option(
        False, "--debug", "-d", help="Enable debug mode"
    ),
    version: bool = typer.Option(
        False, "--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Deck: three-layer containerized development environments"""
    # Load configuration, configure logging and register components
    init_application(debug=debug)


@app.command()
def start(
    project_type: Optional[str] = typer.Argument(
        None, help="Project type; used as the template name when --template is not given"
    ),
    env: str = typer.Option("development", "--env", "-e", help="development|test|production (or dev|test|prod)"),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Template to copy"),
    custom: Optional[str] = typer.Option(None, "--custom", "-c", help="Custom configuration to build"),
    image: Optional[str] = typer.Option(None, "--image", "-i", help="Existing Image to start"),
    edit: bool = typer.Option(False, "--edit", help="Only create an editable Custom configuration"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Use cached templates without syncing"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="Template variable as KEY=VALUE (repeatable)"),
):
    """
    Start a development environment from a Template, Custom configuration or Image.

    With no target, pick one from a menu of all three layers.
    """
    environment = parse_environment(env)
    variables = parse_variables(var)

    if not any((project_type, template, custom, image)):
        selection = asyncio.run(orchestrator.selectable_items())
        exit_on_failure(selection)
        if selection.items:
            chosen = choose_start_target(selection.items)
            logger.debug(f"Selected {chosen.layer.value} {chosen.name}")
            if chosen.layer == Layer.IMAGE:
                image = chosen.name
            elif chosen.layer == Layer.CUSTOM:
                custom = chosen.name
            else:
                template = chosen.name

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}[/bold blue]"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Preparing...", total=None)

        def _progress(message: str) -> None:
            progress.update(task, description=message)
            console.print(f"[dim]{message}[/dim]")

        result = asyncio.run(orchestrator.start(
            project_type=project_type,
            environment=environment,
            template=template,
            custom=custom,
            image=image,
            edit=edit,
            sync=not no_sync,
            variables=variables,
            progress=_progress,
        ))

    if not result.success:
        if result.lifecycle is not None:
            print_conflicts(result.lifecycle)
        exit_on_failure(result)

    lines = [f"[bold green]{result.message}[/bold green]"]
    if result.chain:
        lines.append(" -> ".join(result.chain))
    if result.environment:
        lines.append(f"Environment: {result.environment.display_value}")
    if result.container_name:
        lines.append(f"Container: {result.container_name}")
    if result.lifecycle is not None:
        lines.append(
            f"Mode: {result.lifecycle.mode.value} ({result.lifecycle.elapsed_seconds:.2f}s)"
        )
        if result.lifecycle.hint:
            lines.append(f"[cyan]{result.lifecycle.hint}[/cyan]")
    console.print(Panel("\n".join(lines), title="Deck", border_style="green", expand=False))
    ports = dict(result.ports)
    if result.lifecycle is not None:
        ports.update(result.lifecycle.reassigned_ports)
    print_ports(ports)
    print_warnings(result)


@app.command()
def ps(
    all_containers: bool = typer.Option(False, "--all", "-a", help="Include stopped containers"),
):
    """List this project's containers."""
    result = asyncio.run(orchestrator.ps(include_stopped=all_containers))
    exit_on_failure(result)
    if not result.containers:
        console.print("[yellow]No containers found for this project.[/yellow]")
        return
    console.print(containers_table(result.containers))


@app.command()
def stop(
    name: str = typer.Argument(..., help="Container or Image name"),
    force: bool = typer.Option(False, "--force", "-f", help="Stop without waiting"),
):
    """Stop a container."""
    result = asyncio.run(orchestrator.stop(name, force=force))
    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")


@app.command()
def restart(
    name: str = typer.Argument(..., help="Container or Image name"),
):
    """Restart an existing container."""
    result = asyncio.run(orchestrator.restart(name))
    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")


@app.command()
def logs(
    name: str = typer.Argument(..., help="Container or Image name"),
    tail: int = typer.Option(100, "--tail", "-n", help="Number of lines to show"),
):
    """Show container logs."""
    result = asyncio.run(orchestrator.logs(name, tail=tail))
    if not result.success:
        print_failure(result)
        raise typer.Exit(code=1)
    console.print(result.output, markup=False, highlight=False, end="")


@app.command()
def shell(
    name: str = typer.Argument(..., help="Container or Image name"),
    command: Optional[List[str]] = typer.Argument(None, help="Command to run instead of an interactive shell"),
    shell_path: str = typer.Option("/bin/bash", "--shell", "-s", help="Shell to open"),
):
    """Open a shell in a running container, or run one command in it."""
    if command:
        result = asyncio.run(orchestrator.exec(name, list(command)))
        if not result.success:
            print_failure(result)
            raise typer.Exit(code=1)
        console.print(result.output, markup=False, highlight=False, end="")
        return

    attach = asyncio.run(orchestrator.shell(name, shell=shell_path))
    exit_on_failure(attach)
    console.print(f"[dim]Entering {attach.container_name} (exit to leave)[/dim]")
    logger.info(f"Attaching to {attach.container_name}")
    code = subprocess.call(attach.argv)
    if code != 0:
        raise typer.Exit(code=code)


@app.command()
def rm(
    name: str = typer.Argument(..., help="Container or Image name"),
    force: bool = typer.Option(False, "--force", "-f", help="Remove even if running"),
):
    """Remove a container. Its Image is kept and can be started again."""
    result = asyncio.run(orchestrator.rm(name, force=force, confirm_protected=get_protected_confirmation()))
    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")
