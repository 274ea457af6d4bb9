# deck/components/cli/rendering.py
"""
Rich rendering of operation results shared by the CLI commands.
"""
from typing import Dict, List

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from deck.components.engine.base import ContainerRecord, ContainerStatus
from deck.components.lifecycle.manager import LifecycleResult
from deck.core.errors import OperationResult

console = Console()

STATUS_STYLES = {
    ContainerStatus.RUNNING: "green",
    ContainerStatus.STOPPED: "yellow",
    ContainerStatus.ABSENT: "dim",
}


def print_warnings(result: OperationResult) -> None:
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def print_failure(result: OperationResult) -> None:
    """Render a failed result as a red panel."""
    error = result.error
    lines = [f"[bold]{result.message}[/bold]"]
    if error is not None:
        lines.append(f"Kind: {error.kind.value}")
        if error.resource:
            lines.append(f"Resource: {error.resource}")
        if error.layer:
            lines.append(f"Layer: {error.layer}")
        if error.remediation:
            lines.append(f"\n[cyan]Try:[/cyan] {error.remediation}")
    console.print(Panel("\n".join(lines), title="Error", border_style="red", expand=False))
    print_warnings(result)


def exit_on_failure(result: OperationResult) -> None:
    """Print a failed result and exit with status 1."""
    if not result.success:
        print_failure(result)
        raise typer.Exit(code=1)


def print_ports(ports: Dict[str, int], title: str = "Ports") -> None:
    if not ports:
        return
    table = Table(title=title)
    table.add_column("Variable", style="cyan")
    table.add_column("Port", style="green", justify="right")
    for key, port in sorted(ports.items()):
        table.add_row(key, str(port))
    console.print(table)


def print_conflicts(result: LifecycleResult) -> None:
    """Render port conflicts and their ranked resolution suggestions."""
    if not result.conflicts:
        return
    table = Table(title="Port Conflicts")
    table.add_column("Port", style="cyan", justify="right")
    table.add_column("Severity")
    table.add_column("Held by")
    table.add_column("Suggestions")
    for conflict in result.conflicts:
        holder = "unknown"
        if conflict.process is not None:
            holder = f"{conflict.process.name} (pid {conflict.process.pid})"
        suggestions = result.suggestions.get(conflict.port, [])
        table.add_row(
            str(conflict.port),
            conflict.severity.value,
            holder,
            "\n".join(f"[{s.risk.value}] {s.description}" for s in suggestions),
        )
    console.print(table)


def containers_table(containers: List[ContainerRecord], title: str = "Containers") -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Image")
    table.add_column("Ports")
    table.add_column("Created")
    for record in containers:
        style = STATUS_STYLES.get(record.status, "white")
        table.add_row(
            record.name,
            f"[{style}]{record.state or record.status.value}[/{style}]",
            record.image,
            ", ".join(str(p) for p in record.ports),
            record.created.strftime("%Y-%m-%d %H:%M") if record.created else "",
        )
    return table
