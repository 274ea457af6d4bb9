# deck/orchestrator.py
"""
Command orchestration for Deck.

One entry coroutine per CLI command. The orchestrator resolves user input
(names, environments, options) into calls on the workflow, lifecycle and
catalog components and returns their results unchanged for rendering.
"""
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from deck.api.catalog import get_resource_catalog
from deck.api.containers import get_lifecycle_engine
from deck.api.safety import get_permission_guard
from deck.api.workflows import get_template_manager, get_workflow
from deck.components.catalog.resources import (
    CleaningOption,
    CleaningOptionId,
    CleaningResult,
    ResourceRelationship,
    UnifiedResourceList,
)
from deck.components.engine.base import ContainerRecord
from deck.components.lifecycle.manager import ContainerListResult, LifecycleResult, LogsResult, ShellResult
from deck.components.safety.permissions import (
    EnvValidationResult,
    PermissionGuidance,
    PermissionSummary,
    PermissionViolation,
    ViolationType,
)
from deck.components.workflows.layout import LayerArtifact
from deck.components.workflows.metadata import BuildStatus, ImageMetadata
from deck.components.workflows.orchestrator import WorkflowMode, WorkflowResult
from deck.components.workflows.templates import TemplateInfo, TemplateSyncResult
from deck.constants import ENV_FILE
from deck.core.environments import EnvironmentType, Layer
from deck.core.errors import EngineUnavailableError, ErrorKind, OperationResult
from deck.utils.env_files import port_variables, read_env
from deck.utils.logging import get_logger

logger = get_logger(__name__)


class ImageInfoResult(OperationResult):
    image_name: str = ""
    metadata: Optional[ImageMetadata] = None
    chain: List[str] = Field(default_factory=list)
    ports: Dict[str, int] = Field(default_factory=dict)
    container: Optional[ContainerRecord] = None
    missing_files: List[str] = Field(default_factory=list)


class CleaningOptionsResult(OperationResult):
    options: List[CleaningOption] = Field(default_factory=list)


class SelectableItem(BaseModel):
    """One entry of the interactive start menu."""
    layer: Layer
    name: str
    label: str
    protected: bool = False
    available: bool = True


class SelectionResult(OperationResult):
    items: List[SelectableItem] = Field(default_factory=list)


class CustomConfigInfo(BaseModel):
    artifact: LayerArtifact
    source: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class CustomListResult(OperationResult):
    configs: List[CustomConfigInfo] = Field(default_factory=list)


class PermissionHelpResult(OperationResult):
    summary: Optional[PermissionSummary] = None
    guidance: List[PermissionGuidance] = Field(default_factory=list)


class Orchestrator:
    """Entry points for every Deck command."""

    def __init__(self):
        self._logger = logger

    # --- start ---

    async def start(
        self,
        project_type: Optional[str] = None,
        environment: EnvironmentType = EnvironmentType.DEVELOPMENT,
        template: Optional[str] = None,
        custom: Optional[str] = None,
        image: Optional[str] = None,
        edit: bool = False,
        sync: bool = True,
        variables: Optional[Dict[str, str]] = None,
        progress: Optional[Callable[[str], None]] = None,
    ) -> WorkflowResult:
        """
        Start a development environment from whichever layer the user named.

        Precedence is Image, then Custom, then Template (or the project type
        used as a template name).

        Args:
            project_type: Template name shorthand, e.g. ``dotnet``
            environment: Target environment for new Images
            template: Template to copy
            custom: Custom configuration to build
            image: Existing Image to start
            edit: Stop after creating an editable Custom configuration
            sync: Sync templates before using them
            variables: Template variable values
            progress: Step message display callback

        Returns:
            The workflow result
        """
        workflow = await get_workflow(progress)

        if image:
            self._logger.info(f"Starting image {image}")
            result = await workflow.execute_images_workflow(image)
            if result.success and result.environment and result.environment != environment \
                    and environment != EnvironmentType.DEVELOPMENT:
                result.warnings.append(
                    f"{image} was built for {result.environment.value}; --env only applies to new Images"
                )
            return result

        if custom:
            self._logger.info(f"Building custom configuration {custom} for {environment.value}")
            return await workflow.execute_custom_config_workflow(custom, environment)

        template_name = template or project_type
        if not template_name:
            return WorkflowResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                "Nothing to start",
                operation="start",
                remediation="Pass a project type, --template, --custom or --image",
            )

        templates = await get_template_manager().ensure_templates(sync=sync)
        if not templates.success:
            return WorkflowResult.from_error(templates.error, template_name=template_name)

        mode = WorkflowMode.CREATE_EDITABLE_CONFIG if edit else WorkflowMode.DIRECT_BUILD_AND_START
        result = await workflow.execute_template_workflow(
            template_name,
            mode,
            environment=environment,
            project_name=project_type if template else None,
            variables=variables,
        )
        result.warnings = templates.warnings + result.warnings
        return result

    # --- Containers ---

    async def _owning_image(self, name: str):
        """
        Resolve an Image or container name.

        Returns:
            (container name, owning Image name or None, its metadata or None)
        """
        workflow = await get_workflow()
        metadata = await workflow.read_image_metadata(workflow.layout.path_for(Layer.IMAGE, name))
        if metadata is not None and metadata.container_name:
            return metadata.container_name, name, metadata
        image_name = workflow.find_image_by_container(name)
        if image_name is None:
            return name, None, None
        return name, image_name, await workflow.read_image_metadata(workflow.layout.path_for(Layer.IMAGE, image_name))

    async def _resolve_container(self, name: str) -> str:
        """Accept an Image name in place of its container name."""
        container_name, _, _ = await self._owning_image(name)
        return container_name

    async def ps(self, include_stopped: bool = False) -> ContainerListResult:
        """List the containers belonging to this project's Images."""
        workflow = await get_workflow()
        names = []
        for image_name in workflow.layout.list_names(Layer.IMAGE):
            metadata = await workflow.read_image_metadata(workflow.layout.path_for(Layer.IMAGE, image_name))
            if metadata is not None and metadata.container_name:
                names.append(metadata.container_name)
        lifecycle = await get_lifecycle_engine()
        return await lifecycle.list_project_containers(names, include_stopped=include_stopped)

    async def stop(self, name: str, force: bool = False) -> LifecycleResult:
        container_name = await self._resolve_container(name)
        result = await (await get_lifecycle_engine()).stop(container_name, force=force)
        if result.success:
            workflow = await get_workflow()
            await workflow.record_container_event(container_name, running=False)
        return result

    async def restart(self, name: str) -> LifecycleResult:
        container_name = await self._resolve_container(name)
        result = await (await get_lifecycle_engine()).restart(container_name)
        if result.success:
            workflow = await get_workflow()
            await workflow.record_container_event(container_name, running=True)
        return result

    async def logs(self, name: str, tail: int = 100) -> LogsResult:
        container_name = await self._resolve_container(name)
        return await (await get_lifecycle_engine()).logs(container_name, tail=tail)

    async def exec(self, name: str, command: List[str]) -> LogsResult:
        """Run one command in a running container and capture its output."""
        container_name = await self._resolve_container(name)
        return await (await get_lifecycle_engine()).exec_command(container_name, command)

    async def shell(self, name: str, shell: str = "/bin/bash") -> ShellResult:
        """Resolve the command line for an interactive shell in a running container."""
        container_name = await self._resolve_container(name)
        return await (await get_lifecycle_engine()).attach_command(container_name, shell=shell)

    async def rm(
        self,
        name: str,
        force: bool = False,
        confirm_protected: Optional[Callable[[str], bool]] = None,
    ) -> LifecycleResult:
        """
        Remove a container; its Image directory is kept.

        Args:
            name: Container or Image name
            force: Remove even if running
            confirm_protected: Asked with the container name when it is
                protected; removal goes ahead only on True
        """
        container_name, image_name, metadata = await self._owning_image(name)
        environment = metadata.environment if metadata else None
        lifecycle = await get_lifecycle_engine()

        confirmed = False
        if lifecycle.is_protected(container_name, environment):
            confirmed = bool(confirm_protected and confirm_protected(container_name))
            if not confirmed:
                return LifecycleResult.fail(
                    ErrorKind.PRODUCTION_PROTECTED,
                    f"{container_name} is protected and removal was not confirmed",
                    resource=container_name,
                    operation="remove",
                    remediation="Type the container name exactly when asked",
                    container_name=container_name,
                )

        result = await lifecycle.remove(
            container_name, force=force, allow_protected=confirmed, environment=environment
        )
        if result.success and image_name is not None and metadata is not None and metadata.is_built:
            workflow = await get_workflow()
            workflow.metadata_store.update(
                workflow.layout.path_for(Layer.IMAGE, image_name), build_status=BuildStatus.BUILT
            )
        return result

    # --- Interactive start ---

    async def selectable_items(self, environment: Optional[EnvironmentType] = None) -> SelectionResult:
        """
        Everything ``deck start`` can start, Images first, then Custom
        configurations, then Templates.
        """
        catalog = await get_resource_catalog()
        listing = await catalog.get_unified_resource_list(environment)
        if not listing.success:
            return SelectionResult.from_error(listing.error)

        items = []
        for entry in listing.images:
            env = entry.environment.display_value if entry.environment else "unknown"
            items.append(SelectableItem(
                layer=Layer.IMAGE,
                name=entry.name,
                label=f"{entry.name} ({env}, {entry.relative_time})",
                protected=entry.protected,
                available=entry.available,
            ))
        for entry in listing.custom:
            source = f" from {entry.source}" if entry.source else ""
            items.append(SelectableItem(
                layer=Layer.CUSTOM, name=entry.name, label=f"{entry.name}{source}", available=entry.available
            ))
        for entry in listing.templates:
            items.append(SelectableItem(
                layer=Layer.TEMPLATE, name=entry.name, label=entry.name, available=entry.available
            ))
        return SelectionResult.ok(f"{len(items)} item(s)", items=items)

    # --- images ---

    async def list_images(
        self,
        environment: Optional[EnvironmentType] = None,
        project_type: Optional[str] = None,
    ) -> UnifiedResourceList:
        catalog = await get_resource_catalog()
        return await catalog.get_unified_resource_list(environment, project_type)

    async def relationships(self) -> List[ResourceRelationship]:
        catalog = await get_resource_catalog()
        return await catalog.get_resource_relationships()

    async def image_info(self, image_name: str) -> ImageInfoResult:
        """Metadata, chain, ports, validation and live container state of one Image."""
        workflow = await get_workflow()
        image_dir = workflow.layout.path_for(Layer.IMAGE, image_name)
        catalog = await get_resource_catalog()
        report = await catalog.validate_resource(Layer.IMAGE, image_name)
        if report.error_kind == ErrorKind.RESOURCE_NOT_FOUND:
            return ImageInfoResult.from_error(report.error, image_name=image_name)

        metadata = await workflow.read_image_metadata(image_dir)
        result = ImageInfoResult.ok(
            image_name,
            image_name=image_name,
            metadata=metadata,
            chain=await workflow.generate_configuration_chain(None, None, image_name),
            ports=port_variables(read_env(image_dir / ENV_FILE)),
            missing_files=report.missing + report.empty,
        )
        if not report.success:
            result.warnings.append(report.message)
        if metadata is None:
            result.warnings.append("metadata.json is missing; it is recreated on next start")
            return result

        lifecycle = await get_lifecycle_engine()
        if lifecycle.engine is None:
            result.warnings.append("No container engine is available; container state unknown")
            return result
        try:
            result.container = await lifecycle.engine.get_info(metadata.container_name)
        except EngineUnavailableError as e:
            result.warnings.append(f"Container state unknown: {e}")
        return result

    async def permission_help(self, image_name: Optional[str] = None) -> PermissionHelpResult:
        """What may and may not change inside an Image, with the legitimate way to do each."""
        guard = get_permission_guard()
        workflow = await get_workflow()
        image_dir = workflow.layout.path_for(Layer.IMAGE, image_name or "<image>")

        summary = None
        if image_name is not None:
            if not image_dir.is_dir():
                return PermissionHelpResult.fail(
                    ErrorKind.RESOURCE_NOT_FOUND,
                    f"Image '{image_name}' not found",
                    resource=image_name,
                    operation="permission_help",
                    layer=Layer.IMAGE.value,
                    remediation="Run 'deck images list'",
                )
            summary = guard.get_permission_summary(image_dir)

        guidance = [
            guard.get_permission_guidance(PermissionViolation(type=kind, path=str(image_dir)))
            for kind in ViolationType
        ]
        return PermissionHelpResult.ok(image_name or "Image permissions", summary=summary, guidance=guidance)

    async def set_image_env(self, image_name: str, changes: Dict[str, Optional[str]]) -> EnvValidationResult:
        """Change runtime variables in an Image's .env; anything else is refused."""
        workflow = await get_workflow()
        image_dir = workflow.layout.path_for(Layer.IMAGE, image_name)
        if not image_dir.is_dir():
            return EnvValidationResult.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"Image '{image_name}' not found",
                resource=image_name,
                operation="modify_env",
                layer=Layer.IMAGE.value,
            )
        return get_permission_guard().apply_runtime_env_changes(image_dir, changes)

    # --- custom ---

    async def list_custom(self) -> CustomListResult:
        """Custom configurations with their source Template and the Images built from them."""
        workflow = await get_workflow()
        layout, store = workflow.layout, workflow.metadata_store

        built: Dict[str, List[str]] = {}
        for image_name in layout.list_names(Layer.IMAGE):
            metadata = store.read(layout.path_for(Layer.IMAGE, image_name))
            if metadata is not None and metadata.source_custom:
                built.setdefault(metadata.source_custom, []).append(image_name)

        configs = []
        for artifact in layout.artifacts(Layer.CUSTOM):
            origin = store.read_origin(artifact.path)
            configs.append(CustomConfigInfo(
                artifact=artifact,
                source=(origin.source_template or origin.source_image) if origin else None,
                images=built.get(artifact.name, []),
            ))
        return CustomListResult.ok(f"{len(configs)} Custom configuration(s)", configs=configs)

    async def create_custom(
        self,
        template: str,
        name: Optional[str] = None,
        sync: bool = True,
        variables: Optional[Dict[str, str]] = None,
    ) -> WorkflowResult:
        """Copy a Template into an editable Custom configuration without building it."""
        templates = await get_template_manager().ensure_templates(sync=sync)
        if not templates.success:
            return WorkflowResult.from_error(templates.error, template_name=template)
        workflow = await get_workflow()
        result = await workflow.execute_template_workflow(
            template, WorkflowMode.CREATE_EDITABLE_CONFIG, project_name=name, variables=variables
        )
        result.warnings = templates.warnings + result.warnings
        return result

    async def cleaning_options(self, non_interactive: bool = False) -> CleaningOptionsResult:
        catalog = await get_resource_catalog()
        options = await catalog.get_cleaning_options(non_interactive=non_interactive)
        return CleaningOptionsResult.ok(f"{len(options)} option(s)", options=options)

    async def clean(
        self,
        option_id: CleaningOptionId,
        confirmation_callback: Optional[Callable] = None,
        non_interactive: bool = False,
        selected: Optional[List[str]] = None,
    ) -> CleaningResult:
        """
        Run one cleaning option.

        Args:
            option_id: Option to run
            confirmation_callback: Asked per candidate
            non_interactive: Only automatic options are available
            selected: For selective options, the candidate names to consider
        """
        catalog = await get_resource_catalog()
        options = await catalog.get_cleaning_options(non_interactive=non_interactive)
        option = next((o for o in options if o.id == option_id), None)
        if option is None:
            return CleaningResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"Cleaning option '{option_id.value}' is not available here",
                operation="clean",
                remediation="Selective options need an interactive terminal",
                option_id=option_id,
            )
        if selected is not None:
            wanted = set(selected)
            option = option.model_copy(update={"candidates": [c for c in option.candidates if c.name in wanted]})
        self._logger.info(f"Cleaning with option {option_id.value} ({len(option.candidates)} candidate(s))")
        return await catalog.execute_cleaning(option, confirmation_callback)

    # --- templates ---

    def list_templates(self) -> List[TemplateInfo]:
        return get_template_manager().list_templates()

    async def sync_templates(self, force: bool = False) -> TemplateSyncResult:
        return await get_template_manager().sync_templates(force=force)


# Global orchestrator instance
orchestrator = Orchestrator()
