# deck/api/workflows.py
"""
Public API for the three-layer workflow components.
"""
from pathlib import Path
from typing import Callable, Optional

from deck.config import config_manager
from deck.core.registry import registry


def get_project_layout(project_root: Optional[Path] = None):
    """Get the layout of the project containing ``project_root`` (cwd by default)."""
    from deck.components.workflows.layout import ProjectLayout, find_project_root
    layout = registry.get("project_layout")
    if layout is not None and project_root is None:
        return layout
    root = find_project_root(project_root)
    if layout is not None and layout.project_root == root:
        return layout
    return registry.register("project_layout", ProjectLayout(root))


def get_metadata_store():
    """Get the Image metadata store."""
    from deck.components.workflows.metadata import MetadataStore
    return registry.get_or_create(
        "metadata_store",
        MetadataStore,
        config_manager.config.protection.production_patterns,
    )


def get_template_manager():
    """Get the template manager for the current project."""
    from deck.api.execution import get_execution_engine
    from deck.components.workflows.templates import TemplateManager
    return registry.get_or_create(
        "template_manager",
        TemplateManager,
        get_project_layout(),
        config_manager.config.templates,
        get_execution_engine(),
    )


async def get_workflow(progress: Optional[Callable[[str], None]] = None):
    """
    Get the three-layer workflow orchestrator.

    Args:
        progress: Receives ``[Step i/n] ...`` messages; only used when the
            workflow is created by this call
    """
    from deck.api.containers import get_lifecycle_engine
    from deck.api.ports import get_port_allocator
    from deck.api.safety import get_permission_guard
    from deck.components.workflows.orchestrator import ThreeLayerWorkflow

    workflow = registry.get("workflow")
    if workflow is not None:
        return workflow
    return registry.get_or_create(
        "workflow",
        ThreeLayerWorkflow,
        get_project_layout(),
        await get_lifecycle_engine(),
        port_allocator=get_port_allocator(),
        permission_guard=get_permission_guard(),
        metadata_store=get_metadata_store(),
        progress=progress,
    )
