# deck/components/catalog/__init__.py
"""Cross-layer resource listing, relationships and cleanup."""
from deck.components.catalog.resources import (
    CleaningCandidate,
    CleaningOption,
    CleaningOptionId,
    CleaningResult,
    ResourceKind,
    UnifiedResourceCatalog,
)

__all__ = [
    "CleaningCandidate",
    "CleaningOption",
    "CleaningOptionId",
    "CleaningResult",
    "ResourceKind",
    "UnifiedResourceCatalog",
]
