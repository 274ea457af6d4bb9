# deck/components/workflows/__init__.py
"""Three-layer configuration workflows: layout, metadata, templates and promotion."""
from deck.components.workflows.layout import LayerArtifact, ProjectLayout, find_project_root
from deck.components.workflows.metadata import BuildStatus, CustomOrigin, ImageMetadata, MetadataStore
from deck.components.workflows.orchestrator import ThreeLayerWorkflow, WorkflowMode, WorkflowResult
from deck.components.workflows.templates import TemplateManager

__all__ = [
    "LayerArtifact",
    "ProjectLayout",
    "find_project_root",
    "BuildStatus",
    "CustomOrigin",
    "ImageMetadata",
    "MetadataStore",
    "ThreeLayerWorkflow",
    "WorkflowMode",
    "WorkflowResult",
    "TemplateManager",
]
