# deck/components/safety/confirmation.py
"""
User confirmation for destructive operations.

Protected resources always need the user to type the resource name; a
``--yes`` flag only covers unprotected ones.
"""
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from deck.constants import CONFIRMATION_LEVELS
from deck.utils.logging import get_logger

logger = get_logger(__name__)
console = Console()

LEVEL_COLORS = {
    CONFIRMATION_LEVELS["LOW"]: "blue",
    CONFIRMATION_LEVELS["MEDIUM"]: "yellow",
    CONFIRMATION_LEVELS["HIGH"]: "bright_red",
    CONFIRMATION_LEVELS["CRITICAL"]: "red",
}


def confirm_action(message: str, level: int = CONFIRMATION_LEVELS["MEDIUM"], default: bool = False) -> bool:
    """Ask a yes/no question with a colour matching the impact level."""
    color = LEVEL_COLORS.get(level, "yellow")
    return Confirm.ask(f"[{color}]{message}[/{color}]", default=default, console=console)


def confirm_protected_resource(name: str, reason: Optional[str] = None) -> bool:
    """
    Require the user to type ``name`` before touching a protected resource.

    Args:
        name: Resource name the user must repeat
        reason: Why the resource is protected

    Returns:
        True only if the typed text matches exactly
    """
    body = f"[bold]{name}[/bold] is a protected resource."
    if reason:
        body += f"\n{reason}"
    body += "\n\nThis action cannot be undone."
    console.print(Panel(body, title="Protected Resource", border_style="red", expand=False))

    typed = Prompt.ask(f"Type [bold]{name}[/bold] to confirm", console=console, default="")
    confirmed = typed.strip() == name
    if not confirmed:
        logger.info(f"Protected operation on {name} was not confirmed")
    return confirmed


def make_cleaning_confirmation(assume_yes: bool = False) -> Callable:
    """
    Build the per-candidate callback used by cleaning.

    Args:
        assume_yes: Skip the question for unprotected candidates

    Returns:
        A callable taking a cleaning candidate and returning True to delete it
    """
    def _confirm(candidate) -> bool:
        if candidate.protected:
            return confirm_protected_resource(candidate.name, candidate.reason)
        if assume_yes:
            return True
        return confirm_action(
            f"Remove {candidate.kind.value} '{candidate.name}'? ({candidate.reason})",
            level=CONFIRMATION_LEVELS["HIGH"],
        )

    return _confirm
