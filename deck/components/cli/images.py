# deck/components/cli/images.py
"""
CLI commands for the Image layer: listing, details and cleanup.
"""
import asyncio
from typing import Dict, List, Optional

import typer
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.tree import Tree

from deck.api.safety import get_cleaning_confirmation
from deck.components.catalog.resources import CleaningOption, CleaningOptionId, ResourceRelationship
from deck.components.cli.rendering import console, exit_on_failure, print_ports, print_warnings
from deck.core.environments import EnvironmentType, Layer
from deck.orchestrator import orchestrator
from deck.utils.logging import get_logger

logger = get_logger(__name__)

# Create the Typer app for image commands
app = typer.Typer(help="Manage Images, Custom configurations and their containers")


@app.command("list")
def list_images(
    env: Optional[str] = typer.Option(None, "--env", "-e", help="Only Images for this environment"),
    project_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only resources whose name starts with this"),
):
    """List Images, Custom configurations and Templates."""
    environment = None
    if env:
        try:
            environment = EnvironmentType.parse(env)
        except ValueError as e:
            raise typer.BadParameter(str(e))

    result = asyncio.run(orchestrator.list_images(environment, project_type))
    exit_on_failure(result)

    images = Table(title="Images")
    images.add_column("Name", style="cyan")
    images.add_column("Environment")
    images.add_column("Status")
    images.add_column("Container")
    images.add_column("Source")
    images.add_column("Created")
    for entry in result.images:
        name = f"[red]{entry.name} (protected)[/red]" if entry.protected else entry.name
        if not entry.available:
            name += f" [yellow]missing {', '.join(entry.missing_files)}[/yellow]"
        images.add_row(
            name,
            entry.environment.value if entry.environment else "",
            entry.build_status.value if entry.build_status else "",
            entry.container_name or "",
            entry.source or "",
            entry.relative_time,
        )
    console.print(images)

    layers = Table(title="Configurations")
    layers.add_column("Layer", style="magenta")
    layers.add_column("Name", style="cyan")
    layers.add_column("Source")
    layers.add_column("Modified")
    for entry in result.custom + result.templates:
        layers.add_row(entry.layer.value, entry.name, entry.source or "", entry.relative_time)
    console.print(layers)
    console.print(f"[dim]{result.message}[/dim]")


@app.command("info")
def image_info(
    name: str = typer.Argument(..., help="Image name"),
):
    """Show an Image's metadata, ports and container state."""
    result = asyncio.run(orchestrator.image_info(name))
    exit_on_failure(result)

    lines = []
    if result.chain:
        lines.append(" -> ".join(result.chain))
    metadata = result.metadata
    if metadata is not None:
        lines.append(f"Environment: {metadata.environment.display_value}")
        lines.append(f"Build status: {metadata.build_status.value}")
        lines.append(f"Container: {metadata.container_name or '-'}")
        lines.append(f"Created: {metadata.created_at:%Y-%m-%d %H:%M} by {metadata.created_by or 'unknown'}")
        if metadata.last_started:
            lines.append(f"Last started: {metadata.last_started:%Y-%m-%d %H:%M}")
        if metadata.last_stopped:
            lines.append(f"Last stopped: {metadata.last_stopped:%Y-%m-%d %H:%M}")
        if metadata.protected:
            lines.append("[red]Protected production Image[/red]")
    if result.container is not None:
        lines.append(f"Container state: {result.container.state or result.container.status.value}")
    elif metadata is not None:
        lines.append("Container state: not created")
    console.print(Panel("\n".join(lines), title=name, border_style="cyan", expand=False))
    print_ports(result.ports)
    print_warnings(result)


def _options_table(options: List[CleaningOption]) -> Table:
    table = Table(title="Cleaning Options")
    table.add_column("#", justify="right")
    table.add_column("Option", style="cyan")
    table.add_column("Description")
    table.add_column("Candidates", justify="right")
    for index, option in enumerate(options, 1):
        count = "-" if option.informational else str(len(option.candidates))
        table.add_row(str(index), f"{option.title}\n[dim]{option.id.value}[/dim]", option.description, count)
    return table


def _choose_option(options: List[CleaningOption]) -> CleaningOption:
    console.print(_options_table(options))
    choice = Prompt.ask(
        "Choose an option",
        choices=[str(i) for i in range(1, len(options) + 1)],
        console=console,
    )
    return options[int(choice) - 1]


def _choose_candidates(option: CleaningOption) -> List[str]:
    for index, candidate in enumerate(option.candidates, 1):
        marker = " [red](protected)[/red]" if candidate.protected else ""
        console.print(f"  {index}. {candidate.name}{marker}")
    answer = Prompt.ask("Numbers to remove (comma separated)", default="", console=console)
    chosen = []
    for part in answer.split(","):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= len(option.candidates):
            chosen.append(option.candidates[int(part) - 1].name)
    return chosen


@app.command("clean")
def clean(
    option: Optional[CleaningOptionId] = typer.Option(None, "--option", "-o", help="Cleaning option to run"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for unprotected resources"),
):
    """Remove old Images, orphaned Images or stopped containers."""
    run_cleaning(option, yes)


def run_cleaning(option: Optional[CleaningOptionId], yes: bool) -> None:
    """Choose a cleaning option (unless given), pick candidates and print the outcomes."""
    non_interactive = yes and option is not None
    listed = asyncio.run(orchestrator.cleaning_options(non_interactive=non_interactive))
    exit_on_failure(listed)
    options = listed.options

    if option is None:
        chosen = _choose_option(options)
    else:
        chosen = next((o for o in options if o.id == option), None)
        if chosen is None:
            console.print(f"[red]Option {option.value} is not available with --yes[/red]")
            raise typer.Exit(code=1)

    if chosen.informational:
        console.print(f"[cyan]{chosen.description}[/cyan]")
        return
    if not chosen.candidates:
        console.print("[green]Nothing to clean.[/green]")
        return

    selected = _choose_candidates(chosen) if chosen.explicit else None
    if selected == []:
        console.print("[yellow]Nothing selected.[/yellow]")
        return

    result = asyncio.run(orchestrator.clean(
        chosen.id,
        confirmation_callback=get_cleaning_confirmation(assume_yes=yes),
        non_interactive=non_interactive,
        selected=selected,
    ))

    table = Table(title="Cleaning Results")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Outcome")
    for outcome in result.outcomes:
        if outcome.removed:
            status = "[green]removed[/green]"
        elif outcome.skipped:
            status = f"[yellow]skipped: {outcome.message}[/yellow]"
        else:
            status = f"[red]failed: {outcome.message}[/red]"
        table.add_row(outcome.name, outcome.kind.value, status)
    console.print(table)
    exit_on_failure(result)
    console.print(f"[green]{result.message}[/green]")


@app.command("relationships")
def relationships():
    """Show which Custom configurations and Images derive from what."""
    edges = asyncio.run(orchestrator.relationships())
    if not edges:
        console.print("[yellow]No Templates, Custom configurations or Images yet.[/yellow]")
        return

    tree = Tree("[bold]Deck resources[/bold]")
    by_name = {(edge.layer, edge.resource_name): edge for edge in edges}

    def _add(node: Tree, edge: ResourceRelationship, child_layer: Layer) -> None:
        for name in edge.derived:
            child = by_name.get((child_layer, name))
            branch = node.add(f"[cyan]{name}[/cyan] [dim]({child_layer.value})[/dim]")
            if child is not None and child_layer == Layer.CUSTOM:
                _add(branch, child, Layer.IMAGE)
            elif child is not None:
                for container in child.container_names:
                    branch.add(f"[green]{container}[/green] [dim](container)[/dim]")

    for edge in edges:
        if edge.layer == Layer.TEMPLATE:
            _add(tree.add(f"[magenta]{edge.resource_name}[/magenta] [dim](template)[/dim]"), edge, Layer.CUSTOM)
        elif edge.layer == Layer.CUSTOM and edge.source_layer != Layer.TEMPLATE:
            _add(tree.add(f"[cyan]{edge.resource_name}[/cyan] [dim](custom)[/dim]"), edge, Layer.IMAGE)
        elif edge.layer == Layer.IMAGE and edge.source_resource is None:
            tree.add(f"[cyan]{edge.resource_name}[/cyan] [dim](image, no recorded source)[/dim]")
    console.print(tree)


@app.command("help")
def permission_help(
    name: Optional[str] = typer.Argument(None, help="Image to summarise"),
):
    """Explain what may change inside an Image and how to change the rest."""
    result = asyncio.run(orchestrator.permission_help(name))
    exit_on_failure(result)

    summary = result.summary
    if summary is not None:
        table = Table(title=f"Files in {summary.image_name}")
        table.add_column("File", style="cyan")
        table.add_column("Access")
        for path in summary.protected_files:
            table.add_row(path, "[red]protected[/red]")
        for path in summary.modifiable_files:
            table.add_row(path, "[green]modifiable[/green]")
        console.print(table)
        if not summary.is_valid_image_directory:
            console.print("[yellow]This Image is missing required configuration files.[/yellow]")
        console.print(f"Runtime variables: {', '.join(summary.runtime_variables)}")
        for line in summary.guidance:
            console.print(f"  - {line}")

    for guidance in result.guidance:
        lines = [guidance.explanation, ""]
        lines += [f"{i}. {step}" for i, step in enumerate(guidance.steps, 1)]
        if guidance.alternatives:
            lines += ["", *(f"[dim]Alternatively: {alt}[/dim]" for alt in guidance.alternatives)]
        title = guidance.violation.type.value.replace("_", " ").capitalize()
        console.print(Panel("\n".join(lines), title=title, border_style="cyan", expand=False))


@app.command("set-env")
def set_env(
    name: str = typer.Argument(..., help="Image name"),
    assignments: Optional[List[str]] = typer.Argument(None, help="KEY=VALUE runtime variables"),
    unset: Optional[List[str]] = typer.Option(None, "--unset", "-u", help="Runtime variable to remove (repeatable)"),
):
    """Change runtime variables (ports, container name...) in an Image's .env."""
    changes: Dict[str, Optional[str]] = {}
    for item in assignments or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'")
        changes[key.strip()] = value
    for key in unset or []:
        changes[key] = None
    if not changes:
        raise typer.BadParameter("Nothing to change")

    result = asyncio.run(orchestrator.set_image_env(name, changes))
    if not result.success:
        for check in result.details:
            style = "green" if check.key in result.allowed else "red"
            console.print(f"  [{style}]{check.key}[/{style}]: {check.reason}")
    exit_on_failure(result)
    console.print(f"[green]Updated {', '.join(result.allowed)} in {name}[/green]")
    console.print("[dim]Restart the container for the changes to take effect.[/dim]")
