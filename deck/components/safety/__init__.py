# deck/components/safety/__init__.py
"""Permission rules for layer artifacts and confirmation of destructive operations."""
from deck.components.safety.permissions import (
    DirectoryOperation,
    FileCategory,
    FileOperation,
    PermissionGuard,
    PermissionLevel,
    PermissionViolation,
    ViolationType,
)

__all__ = [
    "DirectoryOperation",
    "FileCategory",
    "FileOperation",
    "PermissionGuard",
    "PermissionLevel",
    "PermissionViolation",
    "ViolationType",
]
