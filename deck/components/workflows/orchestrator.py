# deck/components/workflows/orchestrator.py
"""
Three-layer workflow orchestrator.

Drives promotion of configurations through the layers:

    Template --copy--> Custom --copy, ports, build--> Image --start--> container

The Custom directory is never modified by a build, so per-environment port
offsets are applied to the Image copy only and never compound.
"""
import asyncio
import getpass
import shutil
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Set

from pydantic import Field

from deck.components.lifecycle.manager import ContainerLifecycleEngine, LifecycleResult
from deck.components.ports.allocator import PortAllocator, privileged_alternatives
from deck.components.safety.permissions import PermissionGuard
from deck.components.workflows.layout import ProjectLayout, copy_tree_atomic
from deck.components.workflows.metadata import (
    BuildStatus,
    CustomOrigin,
    ImageMetadata,
    MetadataResult,
    MetadataStore,
)
from deck.constants import ENV_FILE, ORIGIN_FILE, PRIVILEGED_PORT_MAX, REQUIRED_CONFIG_FILES
from deck.core.environments import (
    EnvironmentType,
    Layer,
    compose_container_name,
    environment_port,
    generate_image_name,
)
from deck.core.errors import EngineUnavailableError, ErrorKind, OperationResult
from deck.utils.env_files import port_variables, read_env, substitute_in_directory, update_env
from deck.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]


class WorkflowMode(str, Enum):
    CREATE_EDITABLE_CONFIG = "create_editable_config"
    DIRECT_BUILD_AND_START = "direct_build_and_start"


class ValidationReport(OperationResult):
    path: str = ""
    missing: List[str] = Field(default_factory=list)
    empty: List[str] = Field(default_factory=list)


class BuildResult(OperationResult):
    image_name: str = ""
    build_status: Optional[BuildStatus] = None


class WorkflowResult(OperationResult):
    mode: Optional[WorkflowMode] = None
    template_name: Optional[str] = None
    custom_name: Optional[str] = None
    image_name: Optional[str] = None
    container_name: Optional[str] = None
    environment: Optional[EnvironmentType] = None
    ports: Dict[str, int] = Field(default_factory=dict)
    chain: List[str] = Field(default_factory=list)
    lifecycle: Optional[LifecycleResult] = None


class ThreeLayerWorkflow:
    """Template -> Custom -> Image promotion and start hand-off."""

    def __init__(
        self,
        layout: ProjectLayout,
        lifecycle: ContainerLifecycleEngine,
        port_allocator: Optional[PortAllocator] = None,
        permission_guard: Optional[PermissionGuard] = None,
        metadata_store: Optional[MetadataStore] = None,
        progress: Optional[ProgressCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._layout = layout
        self._lifecycle = lifecycle
        self._ports = port_allocator or PortAllocator()
        self._guard = permission_guard or PermissionGuard()
        self._metadata = metadata_store or MetadataStore()
        self._progress = progress
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._logger = logger

    @property
    def layout(self) -> ProjectLayout:
        return self._layout

    @property
    def metadata_store(self) -> MetadataStore:
        return self._metadata

    # --- Progress ---

    async def show_workflow_progress(self, current: int, total: int, description: str) -> None:
        """Forward ``[Step i/n] description`` to the display callback."""
        message = f"[Step {current}/{total}] {description}"
        if self._progress is not None:
            self._progress(message)
        else:
            self._logger.info(message)

    # --- Validation and chain ---

    async def validate_configuration_state(self, config_path: Path) -> ValidationReport:
        """
        Check that the required artifact files exist and are not empty.

        Args:
            config_path: Template, Custom or Image directory

        Returns:
            Pass, or configuration_invalid listing missing and empty files
        """
        config_path = Path(config_path)
        if not config_path.is_dir():
            return ValidationReport.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"{config_path} is not a directory",
                resource=config_path.name,
                operation="validate",
                path=str(config_path),
                missing=list(REQUIRED_CONFIG_FILES),
            )

        missing = [f for f in REQUIRED_CONFIG_FILES if not (config_path / f).is_file()]
        empty = [
            f for f in REQUIRED_CONFIG_FILES
            if f not in missing and not (config_path / f).read_text(encoding="utf-8", errors="replace").strip()
        ]
        if missing or empty:
            problems = []
            if missing:
                problems.append(f"missing {', '.join(missing)}")
            if empty:
                problems.append(f"empty {', '.join(empty)}")
            return ValidationReport.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"{config_path.name}: {'; '.join(problems)}",
                resource=config_path.name,
                operation="validate",
                remediation=f"Each configuration needs {', '.join(REQUIRED_CONFIG_FILES)}",
                path=str(config_path),
                missing=missing,
                empty=empty,
            )
        return ValidationReport.ok(f"{config_path.name} is valid", path=str(config_path))

    async def generate_configuration_chain(
        self,
        template_name: Optional[str] = None,
        custom_name: Optional[str] = None,
        image_name: Optional[str] = None,
    ) -> List[str]:
        """Human-readable chain segments, filling gaps from metadata and origins."""
        if image_name:
            metadata = self._metadata.read(self._layout.path_for(Layer.IMAGE, image_name))
            if metadata is not None:
                custom_name = custom_name or metadata.source_custom
                template_name = template_name or metadata.source_template
        if custom_name and not template_name:
            origin = self._metadata.read_origin(self._layout.path_for(Layer.CUSTOM, custom_name))
            if origin is not None:
                template_name = origin.source_template

        chain = []
        if template_name:
            chain.append(f"Templates: {template_name}")
        if custom_name:
            chain.append(f"Custom: {custom_name}")
        if image_name:
            chain.append(f"Images: {image_name}")
        return chain

    # --- Metadata ---

    async def read_image_metadata(self, image_dir: Path) -> Optional[ImageMetadata]:
        return await asyncio.to_thread(self._metadata.read, Path(image_dir))

    async def update_image_metadata(self, image_dir: Path, metadata: ImageMetadata) -> MetadataResult:
        """Atomically replace the Image's metadata file."""
        return await asyncio.to_thread(self._metadata.write, Path(image_dir), metadata)

    async def record_container_event(self, container_name: str, running: bool) -> Optional[str]:
        """
        Stamp start/stop times on the Image that owns ``container_name``.

        Returns:
            The owning Image name, if any
        """
        image_name = self.find_image_by_container(container_name)
        if image_name is None:
            return None
        image_dir = self._layout.path_for(Layer.IMAGE, image_name)
        now = self._clock()
        if running:
            changes = {"last_started": now, "build_status": BuildStatus.RUNNING}
        else:
            changes = {"last_stopped": now, "build_status": BuildStatus.STOPPED}
        await asyncio.to_thread(self._metadata.update, image_dir, **changes)
        return image_name

    def find_image_by_container(self, container_name: str) -> Optional[str]:
        for name in self._layout.list_names(Layer.IMAGE):
            metadata = self._metadata.read(self._layout.path_for(Layer.IMAGE, name))
            if metadata is not None and metadata.container_name == container_name:
                return name
        return None

    # --- Template workflow ---

    async def execute_template_workflow(
        self,
        template_name: str,
        mode: WorkflowMode,
        environment: EnvironmentType = EnvironmentType.DEVELOPMENT,
        project_name: Optional[str] = None,
        variables: Optional[Mapping[str, str]] = None,
    ) -> WorkflowResult:
        """
        Copy a Template into a new Custom configuration and, in direct mode,
        continue with build and start.

        Args:
            template_name: Template to copy
            mode: Chosen by the caller; never inferred here
            environment: Target environment for direct mode
            project_name: Base name for the Custom copy; the template name by default
            variables: Values substituted for ``${VAR}``/``{{VAR}}`` references

        Returns:
            The Custom name, plus Image and container details in direct mode
        """
        total = 3
        template_dir = self._layout.path_for(Layer.TEMPLATE, template_name)
        if not template_dir.is_dir():
            return WorkflowResult.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"Template '{template_name}' not found",
                resource=template_name,
                operation="template_workflow",
                layer=Layer.TEMPLATE.value,
                remediation="Run 'deck templates list' or 'deck templates sync'",
                mode=mode,
                template_name=template_name,
            )

        await self.show_workflow_progress(1, total, f"Validating template {template_name}")
        report = await self.validate_configuration_state(template_dir)
        if not report.success:
            return WorkflowResult.from_error(report.error, mode=mode, template_name=template_name)

        custom_name = self._layout.unique_name(Layer.CUSTOM, project_name or template_name)
        custom_dir = self._layout.path_for(Layer.CUSTOM, custom_name)
        await self.show_workflow_progress(2, total, f"Creating Custom configuration {custom_name}")
        self._layout.ensure()
        await asyncio.to_thread(copy_tree_atomic, template_dir, custom_dir)
        self._metadata.write_origin(custom_dir, CustomOrigin(source_template=template_name, created_at=self._clock()))

        await self.show_workflow_progress(3, total, "Applying template variables")
        changed = await asyncio.to_thread(substitute_in_directory, custom_dir, variables)
        self._logger.info(f"Created Custom '{custom_name}' from template '{template_name}' ({len(changed)} file(s) substituted)")

        if mode == WorkflowMode.CREATE_EDITABLE_CONFIG:
            return WorkflowResult.ok(
                f"Created editable configuration {custom_name}; edit it under {custom_dir}",
                mode=mode,
                template_name=template_name,
                custom_name=custom_name,
                chain=await self.generate_configuration_chain(template_name, custom_name),
            )

        result = await self.execute_custom_config_workflow(custom_name, environment)
        result.mode = mode
        result.template_name = template_name
        return result

    # --- Custom workflow ---

    async def execute_custom_config_workflow(
        self,
        config_name: str,
        environment: EnvironmentType = EnvironmentType.DEVELOPMENT,
    ) -> WorkflowResult:
        """
        Build a new Image from a Custom configuration and start it.

        Args:
            config_name: Custom configuration to build
            environment: Environment whose naming and port offset apply

        Returns:
            Image name, container name, final ports and the lifecycle outcome
        """
        total = 7
        fields = dict(custom_name=config_name, environment=environment)
        custom_dir = self._layout.path_for(Layer.CUSTOM, config_name)

        await self.show_workflow_progress(1, total, f"Validating configuration {config_name}")
        report = await self.validate_configuration_state(custom_dir)
        if not report.success:
            return WorkflowResult.from_error(report.error, **fields)

        await self.show_workflow_progress(2, total, "Generating image name")
        self._layout.ensure()
        image_name = generate_image_name(
            config_name, self._clock(), exists=lambda n: self._layout.exists(Layer.IMAGE, n)
        )
        name_check = self._guard.validate_image_directory_name(image_name, self._layout.images_dir)
        if not name_check.success:
            return WorkflowResult.from_error(name_check.error, **fields)
        container_name = compose_container_name(image_name, environment)
        fields.update(image_name=image_name, container_name=container_name)
        image_dir = self._layout.path_for(Layer.IMAGE, image_name)

        await self.show_workflow_progress(3, total, f"Creating image directory {image_name}")
        await asyncio.to_thread(
            copy_tree_atomic, custom_dir, image_dir, shutil.ignore_patterns(ORIGIN_FILE)
        )

        await self.show_workflow_progress(4, total, f"Allocating ports for {environment.value}")
        ports, failure = await self._process_ports(image_dir, environment)
        if failure is not None:
            await asyncio.to_thread(shutil.rmtree, image_dir, True)
            return WorkflowResult.from_error(failure.error, **fields)
        fields["ports"] = ports

        await self.show_workflow_progress(5, total, "Writing runtime identifiers")
        update_env(image_dir / ENV_FILE, {
            "PROJECT_NAME": image_name,
            "CONTAINER_NAME": container_name,
            "DEPLOY_ENVIRONMENT": environment.display_value,
        })
        origin = self._metadata.read_origin(custom_dir)
        metadata = ImageMetadata(
            image_name=image_name,
            source_template=origin.source_template if origin else None,
            source_custom=config_name,
            created_at=self._clock(),
            created_by=getpass.getuser(),
            build_status=BuildStatus.PENDING,
            container_name=container_name,
            environment=environment,
        )
        written = await self.update_image_metadata(image_dir, metadata)
        if not written.success:
            return WorkflowResult.from_error(written.error, **fields)

        await self.show_workflow_progress(6, total, f"Building image {image_name}")
        build = await self.build_image(image_dir)
        fields["chain"] = await self.generate_configuration_chain(None, config_name, image_name)
        if not build.success:
            return WorkflowResult.from_error(build.error, **fields)

        await self.show_workflow_progress(7, total, f"Starting container {container_name}")
        started = await self._start(image_dir, container_name, image_built=True)
        if not started.success:
            return WorkflowResult.from_error(started.error, lifecycle=started, **fields)
        return WorkflowResult.ok(
            f"{container_name} is running",
            lifecycle=started,
            warnings=started.warnings,
            **fields,
        )

    async def _process_ports(self, image_dir: Path, environment: EnvironmentType):
        """
        Offset, probe and reassign every port variable of the Image .env.

        Returns:
            (final ports, failure result or None)
        """
        env_path = image_dir / ENV_FILE
        declared = port_variables(read_env(env_path))
        if not declared:
            return {}, None

        targets: Dict[str, int] = {}
        for key, base in declared.items():
            target = environment_port(base, environment)
            if target <= PRIVILEGED_PORT_MAX and not self._ports.allow_privileged:
                alternative = privileged_alternatives(target)[0]
                self._logger.warning(f"{key}={target} is privileged, using {alternative}")
                target = alternative
            targets[key] = target

        checks = await self._ports.check_ports(list(targets.values()))
        assigned: Dict[str, int] = {}
        used: Set[int] = set()
        for (key, target), check in zip(targets.items(), checks):
            port = target if check.is_available and target not in used else None
            if port is None:
                port = await self._ports.find_available_port(
                    None, target + 1, target + self._ports.search_window, exclude=used | {target}
                )
            if port is None:
                return assigned, OperationResult.fail(
                    ErrorKind.PORT_CONFLICT,
                    f"No free port for {key} in {target}-{target + self._ports.search_window}",
                    resource=image_dir.name,
                    operation="allocate_ports",
                    layer=Layer.IMAGE.value,
                    remediation=f"Free port {target} or change {key} in the Custom configuration",
                )
            if port != target:
                self._logger.warning(f"{key} {target} is in use, assigned {port}")
            assigned[key] = port
            used.add(port)

        changed = {key: port for key, port in assigned.items() if declared[key] != port}
        if changed:
            update_env(env_path, changed)
        return assigned, None

    # --- Build ---

    async def build_image(self, image_dir: Path) -> BuildResult:
        """
        Build the Image in ``image_dir`` and record the outcome in its metadata.
        """
        image_dir = Path(image_dir)
        metadata = self._metadata.read(image_dir)
        image_name = image_dir.name
        project_name = (metadata.container_name if metadata else None) or image_name

        engine = self._lifecycle.engine
        if engine is None:
            await self._set_build_status(image_dir, BuildStatus.FAILED)
            return BuildResult.fail(
                ErrorKind.ENGINE_UNAVAILABLE,
                "No container engine is available",
                resource=image_name,
                operation="build",
                remediation="Install Docker or Podman and make sure it is running",
                image_name=image_name,
                build_status=BuildStatus.FAILED,
            )

        await self._set_build_status(image_dir, BuildStatus.BUILDING)
        try:
            outcome = await engine.build(image_dir, project_name)
        except EngineUnavailableError as e:
            await self._set_build_status(image_dir, BuildStatus.FAILED)
            return BuildResult.fail(
                ErrorKind.ENGINE_UNAVAILABLE,
                str(e),
                resource=image_name,
                operation="build",
                image_name=image_name,
                build_status=BuildStatus.FAILED,
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._set_build_status(image_dir, BuildStatus.FAILED))
            raise

        if not outcome.success:
            await self._set_build_status(image_dir, BuildStatus.FAILED)
            self._logger.error(f"Build of {image_name} failed: {outcome.message}")
            return BuildResult.from_error(outcome.error, image_name=image_name, build_status=BuildStatus.FAILED)

        await self._set_build_status(image_dir, BuildStatus.BUILT)
        self._logger.info(f"Built image {image_name}")
        return BuildResult.ok(f"Built {image_name}", image_name=image_name, build_status=BuildStatus.BUILT)

    async def _set_build_status(self, image_dir: Path, status: BuildStatus) -> None:
        if self._metadata.read(image_dir) is None:
            return
        await asyncio.to_thread(self._metadata.update, image_dir, build_status=status)

    # --- Images workflow ---

    async def execute_images_workflow(self, image_name: str) -> WorkflowResult:
        """
        Start an existing Image using its recorded container name and environment.
        """
        image_dir = self._layout.path_for(Layer.IMAGE, image_name)
        if not image_dir.is_dir():
            return WorkflowResult.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"Image '{image_name}' not found",
                resource=image_name,
                operation="images_workflow",
                layer=Layer.IMAGE.value,
                remediation="Run 'deck images list'",
                image_name=image_name,
            )

        report = await self.validate_configuration_state(image_dir)
        if not report.success:
            return WorkflowResult.from_error(report.error, image_name=image_name)

        metadata = await self.read_image_metadata(image_dir)
        if metadata is None:
            metadata = await self._recover_metadata(image_dir)

        fields = dict(
            image_name=image_name,
            custom_name=metadata.source_custom,
            template_name=metadata.source_template,
            container_name=metadata.container_name,
            environment=metadata.environment,
            chain=await self.generate_configuration_chain(None, None, image_name),
        )
        started = await self._start(image_dir, metadata.container_name, image_built=metadata.is_built)
        if not started.success:
            return WorkflowResult.from_error(started.error, lifecycle=started, **fields)
        fields["ports"] = port_variables(read_env(image_dir / ENV_FILE))
        return WorkflowResult.ok(
            f"{metadata.container_name} is running",
            lifecycle=started,
            warnings=started.warnings,
            **fields,
        )

    async def _recover_metadata(self, image_dir: Path) -> ImageMetadata:
        """Rebuild a metadata record for an Image directory that lost it."""
        env = read_env(image_dir / ENV_FILE)
        try:
            environment = EnvironmentType.parse(env.get("DEPLOY_ENVIRONMENT", ""))
        except ValueError:
            environment = EnvironmentType.DEVELOPMENT
        container_name = env.get("CONTAINER_NAME") or compose_container_name(image_dir.name, environment)
        metadata = ImageMetadata(
            image_name=image_dir.name,
            created_at=self._clock(),
            created_by=getpass.getuser(),
            container_name=container_name,
            environment=environment,
        )
        self._logger.warning(f"Metadata missing for {image_dir.name}, recreated it")
        result = await self.update_image_metadata(image_dir, metadata)
        return result.metadata or metadata

    async def _start(self, image_dir: Path, container_name: str, image_built: bool) -> LifecycleResult:
        started = await self._lifecycle.smart_start(
            container_name,
            image_dir,
            image_built=image_built,
            build=lambda: self.build_image(image_dir),
            project_name=container_name,
        )
        if started.success:
            await asyncio.to_thread(
                self._metadata.update,
                image_dir,
                last_started=self._clock(),
                build_status=BuildStatus.RUNNING,
            )
        return started
