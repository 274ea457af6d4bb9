# deck/api/catalog.py
"""
Public API for the unified resource catalog.
"""
from deck.config import config_manager
from deck.core.registry import registry


async def get_resource_catalog():
    """Get the unified resource catalog for the current project."""
    from deck.api.containers import get_lifecycle_engine
    from deck.api.workflows import get_workflow
    from deck.components.catalog.resources import UnifiedResourceCatalog

    catalog = registry.get("resource_catalog")
    if catalog is not None:
        return catalog
    workflow = await get_workflow()
    return registry.get_or_create(
        "resource_catalog",
        UnifiedResourceCatalog,
        workflow,
        await get_lifecycle_engine(),
        cleaning=config_manager.config.cleaning,
    )
