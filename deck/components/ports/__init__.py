# deck/components/ports/__init__.py
"""Port probing and allocation."""
from deck.components.ports.allocator import PortAllocator, privileged_alternatives
from deck.components.ports.models import (
    ConflictSeverity,
    PortCheckResult,
    PortConflict,
    Protocol,
    ResolutionAction,
    ResolutionSuggestion,
    RiskLevel,
)

__all__ = [
    "PortAllocator",
    "privileged_alternatives",
    "ConflictSeverity",
    "PortCheckResult",
    "PortConflict",
    "Protocol",
    "ResolutionAction",
    "ResolutionSuggestion",
    "RiskLevel",
]
