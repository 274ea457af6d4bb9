# deck/components/catalog/resources.py
"""
Unified resource catalog.

One view over Templates, Custom configurations, Images and their
containers: listing, relationships and protection-aware cleanup. Protected
resources never appear in automatic cleanup options; only the explicit
selective options list them, and each one needs its own confirmation.
"""
import inspect
import shutil
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from deck.components.engine.base import ContainerStatus
from deck.components.lifecycle.manager import ContainerLifecycleEngine
from deck.components.workflows.metadata import BuildStatus, ImageMetadata
from deck.components.workflows.orchestrator import ThreeLayerWorkflow, ValidationReport
from deck.config import CleaningConfig
from deck.constants import REQUIRED_CONFIG_FILES
from deck.core.environments import EnvironmentType, Layer, image_name_prefix
from deck.core.errors import ErrorKind, OperationResult
from deck.utils.logging import get_logger

logger = get_logger(__name__)

ConfirmationCallback = Callable[["CleaningCandidate"], Any]
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ResourceKind(str, Enum):
    TEMPLATE = "template"
    CUSTOM = "custom"
    IMAGE = "image"
    CONTAINER = "container"


class CleaningOptionId(str, Enum):
    IMAGES_KEEP_LATEST = "images-keep-latest"
    IMAGES_ORPHANED = "images-orphaned"
    CONTAINERS_STOPPED = "containers-stopped"
    IMAGES_SELECTIVE = "images-selective"
    CUSTOM_SELECTIVE = "custom-selective"
    TEMPLATES_SUGGEST = "templates-suggest"


class ResourceEntry(BaseModel):
    name: str
    layer: Layer
    path: Path
    environment: Optional[EnvironmentType] = None
    protected: bool = False
    available: bool = True
    missing_files: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    relative_time: str = ""
    container_name: Optional[str] = None
    build_status: Optional[BuildStatus] = None
    source: Optional[str] = None


class UnifiedResourceList(OperationResult):
    images: List[ResourceEntry] = Field(default_factory=list)
    custom: List[ResourceEntry] = Field(default_factory=list)
    templates: List[ResourceEntry] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.images) + len(self.custom) + len(self.templates)


class ResourceRelationship(BaseModel):
    resource_name: str
    layer: Layer
    source_resource: Optional[str] = None
    source_layer: Optional[Layer] = None
    derived: List[str] = Field(default_factory=list)
    container_names: List[str] = Field(default_factory=list)


class CleaningCandidate(BaseModel):
    name: str
    kind: ResourceKind
    path: Optional[Path] = None
    reason: str = ""
    protected: bool = False
    container_name: Optional[str] = None
    environment: Optional[EnvironmentType] = None


class CleaningOption(BaseModel):
    id: CleaningOptionId
    title: str
    description: str
    candidates: List[CleaningCandidate] = Field(default_factory=list)
    requires_confirmation: bool = True
    explicit: bool = Field(False, description="May list protected resources, each confirmed individually")
    informational: bool = False


class CleaningItemOutcome(BaseModel):
    name: str
    kind: ResourceKind
    removed: bool = False
    skipped: bool = False
    message: str = ""


class CleaningResult(OperationResult):
    option_id: Optional[CleaningOptionId] = None
    outcomes: List[CleaningItemOutcome] = Field(default_factory=list)

    @property
    def removed(self) -> List[str]:
        return [o.name for o in self.outcomes if o.removed]

    @property
    def skipped(self) -> List[str]:
        return [o.name for o in self.outcomes if o.skipped]

    @property
    def failed(self) -> List[str]:
        return [o.name for o in self.outcomes if not o.removed and not o.skipped]


def relative_time(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Render an age like '5 minutes ago'."""
    if moment is None:
        return "unknown"
    now = now or datetime.now().astimezone()
    if moment.tzinfo is None:
        moment = moment.astimezone()
    seconds = max(0, int((now - moment).total_seconds()))
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"


class UnifiedResourceCatalog:
    """Listing, relationships and cleanup across all three layers."""

    def __init__(
        self,
        workflow: ThreeLayerWorkflow,
        lifecycle: ContainerLifecycleEngine,
        cleaning: Optional[CleaningConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._workflow = workflow
        self._layout = workflow.layout
        self._metadata = workflow.metadata_store
        self._lifecycle = lifecycle
        self._cleaning = cleaning or CleaningConfig()
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._logger = logger

    # --- Listing ---

    def _image_metadata(self) -> Dict[str, Optional[ImageMetadata]]:
        return {
            name: self._metadata.read(self._layout.path_for(Layer.IMAGE, name))
            for name in self._layout.list_names(Layer.IMAGE)
        }

    def _entry(self, layer: Layer, name: str, metadata: Optional[ImageMetadata] = None) -> ResourceEntry:
        path = self._layout.path_for(layer, name)
        missing = [f for f in REQUIRED_CONFIG_FILES if not (path / f).is_file()]
        created = metadata.created_at if metadata else None
        if created is None:
            created = datetime.fromtimestamp(path.stat().st_mtime).astimezone()
        entry = ResourceEntry(
            name=name,
            layer=layer,
            path=path,
            available=not missing,
            missing_files=missing,
            created_at=created,
            relative_time=relative_time(created, self._clock()),
        )
        if metadata is not None:
            entry.environment = metadata.environment
            entry.protected = self._metadata.derive_protection(metadata)
            entry.container_name = metadata.container_name
            entry.build_status = metadata.build_status
            entry.source = metadata.source_custom
        elif layer == Layer.CUSTOM:
            origin = self._metadata.read_origin(path)
            if origin is not None:
                entry.source = origin.source_template or origin.source_image
        return entry

    async def get_unified_resource_list(
        self,
        environment: Optional[EnvironmentType] = None,
        project_type: Optional[str] = None,
    ) -> UnifiedResourceList:
        """
        List all layers in one view.

        Args:
            environment: Keep only Images built for this environment
            project_type: Keep only resources whose name starts with it

        Returns:
            Images (newest first), Custom configurations and Templates
        """
        def _matches(name: str) -> bool:
            return project_type is None or name.lower().startswith(project_type.lower())

        images = [
            self._entry(Layer.IMAGE, name, metadata)
            for name, metadata in self._image_metadata().items()
            if _matches(name)
        ]
        if environment is not None:
            images = [e for e in images if e.environment == environment]
        images.sort(key=lambda e: e.created_at, reverse=True)

        custom = [self._entry(Layer.CUSTOM, n) for n in self._layout.list_names(Layer.CUSTOM) if _matches(n)]
        templates = [self._entry(Layer.TEMPLATE, n) for n in self._layout.list_names(Layer.TEMPLATE) if _matches(n)]

        result = UnifiedResourceList.ok(images=images, custom=custom, templates=templates)
        result.message = f"{result.total} resource(s)"
        return result

    async def get_resource_relationships(self) -> List[ResourceRelationship]:
        """Template -> Custom -> Image edges from origins and metadata."""
        images = self._image_metadata()
        custom_origins = {
            name: self._metadata.read_origin(self._layout.path_for(Layer.CUSTOM, name))
            for name in self._layout.list_names(Layer.CUSTOM)
        }

        relationships = []
        for template in self._layout.list_names(Layer.TEMPLATE):
            derived = [c for c, o in custom_origins.items() if o and o.source_template == template]
            relationships.append(ResourceRelationship(
                resource_name=template, layer=Layer.TEMPLATE, derived=derived
            ))

        for custom, origin in custom_origins.items():
            derived = [i for i, m in images.items() if m and m.source_custom == custom]
            source, source_layer = None, None
            if origin and origin.source_template:
                source, source_layer = origin.source_template, Layer.TEMPLATE
            elif origin and origin.source_image:
                source, source_layer = origin.source_image, Layer.IMAGE
            relationships.append(ResourceRelationship(
                resource_name=custom,
                layer=Layer.CUSTOM,
                source_resource=source,
                source_layer=source_layer,
                derived=derived,
            ))

        for image, metadata in images.items():
            relationships.append(ResourceRelationship(
                resource_name=image,
                layer=Layer.IMAGE,
                source_resource=metadata.source_custom if metadata else None,
                source_layer=Layer.CUSTOM if metadata and metadata.source_custom else None,
                container_names=[metadata.container_name] if metadata and metadata.container_name else [],
            ))
        return relationships

    # --- Cleaning options ---

    def _image_candidate(self, name: str, metadata: Optional[ImageMetadata], reason: str) -> CleaningCandidate:
        return CleaningCandidate(
            name=name,
            kind=ResourceKind.IMAGE,
            path=self._layout.path_for(Layer.IMAGE, name),
            reason=reason,
            protected=bool(metadata and self._metadata.derive_protection(metadata)),
            container_name=metadata.container_name if metadata else None,
            environment=metadata.environment if metadata else None,
        )

    def _keep_latest_candidates(self, images: Dict[str, Optional[ImageMetadata]]) -> List[CleaningCandidate]:
        groups: Dict[str, List[str]] = defaultdict(list)
        for name in images:
            groups[image_name_prefix(name) or name].append(name)

        keep = self._cleaning.keep_latest
        candidates = []
        for prefix, names in sorted(groups.items()):
            ordered = sorted(
                names,
                key=lambda n: (images[n].created_at if images[n] else _EPOCH, n),
                reverse=True,
            )
            for name in ordered[keep:]:
                candidates.append(self._image_candidate(name, images[name], f"older than the latest {keep} of {prefix}"))
        return candidates

    def _orphaned_candidates(self, images: Dict[str, Optional[ImageMetadata]]) -> List[CleaningCandidate]:
        candidates = []
        for name, metadata in images.items():
            source = metadata.source_custom if metadata else None
            if source and self._layout.exists(Layer.CUSTOM, source):
                continue
            reason = f"Custom '{source}' no longer exists" if source else "no Custom ancestor recorded"
            candidates.append(self._image_candidate(name, metadata, reason))
        return candidates

    async def _stopped_container_candidates(self, images: Dict[str, Optional[ImageMetadata]]) -> List[CleaningCandidate]:
        owners = {m.container_name: (n, m) for n, m in images.items() if m and m.container_name}
        listing = await self._lifecycle.list_project_containers(owners.keys(), include_stopped=True)
        if not listing.success:
            self._logger.warning(f"Cannot list containers: {listing.message}")
            return []

        cutoff = self._clock() - timedelta(days=self._cleaning.stopped_older_than_days)
        candidates = []
        for record in listing.containers:
            if record.status != ContainerStatus.STOPPED:
                continue
            if record.created is not None and record.created > cutoff:
                continue
            _, metadata = owners[record.name]
            candidates.append(CleaningCandidate(
                name=record.name,
                kind=ResourceKind.CONTAINER,
                reason=f"stopped, older than {self._cleaning.stopped_older_than_days} days",
                protected=self._metadata.derive_protection(metadata),
                container_name=record.name,
                environment=metadata.environment,
            ))
        return candidates

    async def _running_containers(self, images: Dict[str, Optional[ImageMetadata]]) -> Set[str]:
        """Names of the Images' containers that are running right now."""
        owned = [m.container_name for m in images.values() if m and m.container_name]
        if not owned:
            return set()
        listing = await self._lifecycle.list_project_containers(owned, include_stopped=False)
        if not listing.success:
            # Nothing can be running without a reachable engine; removal reports its own failure
            self._logger.warning(f"Cannot tell which containers are running: {listing.message}")
            return set()
        return {record.name for record in listing.containers}

    async def get_cleaning_options(self, non_interactive: bool = False) -> List[CleaningOption]:
        """
        Enumerate cleanup strategies with their current candidates.

        Args:
            non_interactive: Only strategies that may run without per-item
                confirmation, flagged as not needing it

        Returns:
            Options; automatic ones never include protected resources
        """
        images = self._image_metadata()
        running = await self._running_containers(images)

        def _automatic(candidates: List[CleaningCandidate]) -> List[CleaningCandidate]:
            kept = []
            for candidate in candidates:
                if candidate.protected:
                    continue
                if candidate.container_name in running:
                    self._logger.debug(f"Not offering {candidate.name}: {candidate.container_name} is running")
                    continue
                kept.append(candidate)
            return kept

        options = [
            CleaningOption(
                id=CleaningOptionId.IMAGES_KEEP_LATEST,
                title=f"Keep the latest {self._cleaning.keep_latest} Images per configuration",
                description="Remove older Images of each configuration, with their stopped containers",
                candidates=_automatic(self._keep_latest_candidates(images)),
                requires_confirmation=not non_interactive,
            ),
            CleaningOption(
                id=CleaningOptionId.IMAGES_ORPHANED,
                title="Remove orphaned Images",
                description="Images whose Custom configuration no longer exists; running ones are kept",
                candidates=_automatic(self._orphaned_candidates(images)),
                requires_confirmation=not non_interactive,
            ),
            CleaningOption(
                id=CleaningOptionId.CONTAINERS_STOPPED,
                title=f"Remove stopped containers older than {self._cleaning.stopped_older_than_days} days",
                description="Containers are recreated from their Image on next start",
                candidates=_automatic(await self._stopped_container_candidates(images)),
                requires_confirmation=not non_interactive,
            ),
        ]
        if non_interactive:
            return options

        options.extend([
            CleaningOption(
                id=CleaningOptionId.IMAGES_SELECTIVE,
                title="Choose Images to remove",
                description="Every Image is offered; protected ones need their name typed",
                candidates=[self._image_candidate(n, m, "selected by you") for n, m in images.items()],
                explicit=True,
            ),
            CleaningOption(
                id=CleaningOptionId.CUSTOM_SELECTIVE,
                title="Choose Custom configurations to remove",
                description="Images built from them are kept",
                candidates=[
                    CleaningCandidate(
                        name=name,
                        kind=ResourceKind.CUSTOM,
                        path=self._layout.path_for(Layer.CUSTOM, name),
                        reason="selected by you",
                    )
                    for name in self._layout.list_names(Layer.CUSTOM)
                ],
                explicit=True,
            ),
            CleaningOption(
                id=CleaningOptionId.TEMPLATES_SUGGEST,
                title="Refresh templates",
                description="Templates are never deleted; run 'deck templates sync' to replace them",
                informational=True,
                requires_confirmation=False,
            ),
        ])
        return options

    # --- Cleaning execution ---

    async def _confirm(self, callback: Optional[ConfirmationCallback], candidate: CleaningCandidate) -> bool:
        if callback is None:
            return False
        answer = callback(candidate)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _still_protected(self, candidate: CleaningCandidate) -> bool:
        if candidate.protected:
            return True
        if candidate.kind != ResourceKind.IMAGE:
            return False
        metadata = self._metadata.read(self._layout.path_for(Layer.IMAGE, candidate.name))
        return bool(metadata and self._metadata.derive_protection(metadata))

    async def _remove(self, candidate: CleaningCandidate, allow_protected: bool) -> CleaningItemOutcome:
        outcome = CleaningItemOutcome(name=candidate.name, kind=candidate.kind)

        if candidate.kind in (ResourceKind.IMAGE, ResourceKind.CONTAINER) and candidate.container_name:
            removed = await self._lifecycle.remove(
                candidate.container_name,
                force=True,
                allow_protected=allow_protected,
                environment=candidate.environment,
            )
            if not removed.success:
                outcome.message = removed.message
                return outcome

        if candidate.kind in (ResourceKind.IMAGE, ResourceKind.CUSTOM) and candidate.path is not None:
            try:
                shutil.rmtree(candidate.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                self._logger.error(f"Could not remove {candidate.path}: {e}")
                outcome.message = str(e)
                return outcome

        outcome.removed = True
        outcome.message = f"Removed {candidate.kind.value} {candidate.name}"
        self._logger.info(outcome.message)
        return outcome

    async def execute_cleaning(
        self,
        option: CleaningOption,
        confirmation_callback: Optional[ConfirmationCallback] = None,
    ) -> CleaningResult:
        """
        Remove an option's candidates, one outcome per candidate.

        Args:
            option: Option returned by get_cleaning_options
            confirmation_callback: Asked per candidate; may be sync or async

        Returns:
            Aggregated outcomes; a failure on one candidate does not stop the rest
        """
        if option.informational:
            return CleaningResult.ok(option.description, option_id=option.id)

        outcomes: List[CleaningItemOutcome] = []
        for candidate in option.candidates:
            protected = self._still_protected(candidate)
            if protected and not option.explicit:
                outcomes.append(CleaningItemOutcome(
                    name=candidate.name,
                    kind=candidate.kind,
                    skipped=True,
                    message=f"{candidate.name} is protected",
                ))
                continue

            if protected or option.requires_confirmation:
                if protected and not candidate.protected:
                    candidate = candidate.model_copy(update={"protected": True})
                if not await self._confirm(confirmation_callback, candidate):
                    outcomes.append(CleaningItemOutcome(
                        name=candidate.name,
                        kind=candidate.kind,
                        skipped=True,
                        message="not confirmed",
                    ))
                    continue

            outcomes.append(await self._remove(candidate, allow_protected=protected))

        failed = [o for o in outcomes if not o.removed and not o.skipped]
        removed = sum(1 for o in outcomes if o.removed)
        skipped = sum(1 for o in outcomes if o.skipped)
        summary = f"Removed {removed}, skipped {skipped}, failed {len(failed)}"
        if failed:
            return CleaningResult.fail(
                ErrorKind.OPERATION_FAILED,
                summary,
                resource=", ".join(o.name for o in failed),
                operation="clean",
                option_id=option.id,
                outcomes=outcomes,
            )
        return CleaningResult.ok(summary, option_id=option.id, outcomes=outcomes)

    # --- Validation ---

    async def validate_resource(self, layer: Layer, name: str) -> ValidationReport:
        path = self._layout.path_for(layer, name)
        if not path.is_dir():
            return ValidationReport.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"{layer.value.capitalize()} '{name}' not found",
                resource=name,
                operation="validate",
                layer=layer.value,
                path=str(path),
            )
        return await self._workflow.validate_configuration_state(path)
