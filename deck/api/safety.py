# deck/api/safety.py
"""
Public API for the safety components.
"""
from typing import Callable

from deck.core.registry import registry


def get_permission_guard():
    """Get the permission guard instance."""
    from deck.components.safety.permissions import PermissionGuard
    return registry.get_or_create("permission_guard", PermissionGuard)


def get_cleaning_confirmation(assume_yes: bool = False) -> Callable:
    """Get the interactive per-candidate confirmation used by cleaning."""
    from deck.components.safety.confirmation import make_cleaning_confirmation
    return make_cleaning_confirmation(assume_yes)


def get_protected_confirmation() -> Callable[[str], bool]:
    """Get the typed-name confirmation used before touching a protected resource."""
    from deck.components.safety.confirmation import confirm_protected_resource
    return confirm_protected_resource
