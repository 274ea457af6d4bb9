# deck/components/workflows/metadata.py
"""
Image metadata and Custom origin records.

Both are JSON files written with write-temp-then-rename, so a reader sees
either the previous file or the new one, never a partial write.
"""
import contextlib
import json
import os
import tempfile
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from deck.constants import DEFAULT_PRODUCTION_PATTERNS, METADATA_FILE, ORIGIN_FILE
from deck.core.environments import EnvironmentType, is_protected
from deck.core.errors import ErrorKind, OperationResult
from deck.utils.logging import get_logger

logger = get_logger(__name__)

# Fields fixed at creation; they identify the Image's place in the chain
CHAIN_FIELDS = ("image_name", "source_template", "source_custom", "created_at")


class BuildStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    BUILT = "built"
    FAILED = "failed"
    RUNNING = "running"
    STOPPED = "stopped"


def _assume_local_time(value: Optional[datetime]) -> Optional[datetime]:
    # Hand-edited files may carry naive timestamps
    if value is not None and value.tzinfo is None:
        return value.astimezone()
    return value


class ImageMetadata(BaseModel):
    """Metadata stored next to every Image."""
    image_name: str
    source_template: Optional[str] = None
    source_custom: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None
    build_status: BuildStatus = BuildStatus.PENDING
    last_started: Optional[datetime] = None
    last_stopped: Optional[datetime] = None
    container_name: Optional[str] = None
    environment: EnvironmentType = EnvironmentType.DEVELOPMENT
    protected: bool = False

    aware_timestamps = field_validator("created_at", "last_started", "last_stopped")(_assume_local_time)

    @property
    def is_built(self) -> bool:
        return self.build_status in (BuildStatus.BUILT, BuildStatus.RUNNING, BuildStatus.STOPPED)


class CustomOrigin(BaseModel):
    """Where a Custom configuration was copied from."""
    source_template: Optional[str] = None
    source_image: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now().astimezone())

    aware_timestamps = field_validator("created_at")(_assume_local_time)


class MetadataResult(OperationResult):
    metadata: Optional[ImageMetadata] = None


def write_text_atomic(path: Path, payload: str) -> None:
    """Replace ``path`` with ``payload`` atomically; the temp file never survives a failure."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


class MetadataStore:
    """Reads and writes ``metadata.json`` and ``.deck-origin.json`` files."""

    def __init__(self, production_patterns: Optional[Iterable[str]] = None):
        self._production_patterns = list(production_patterns or DEFAULT_PRODUCTION_PATTERNS)
        self._logger = logger

    def derive_protection(self, metadata: ImageMetadata) -> bool:
        return is_protected(metadata.environment, metadata.container_name, self._production_patterns)

    def read(self, image_dir: Path) -> Optional[ImageMetadata]:
        """Return the Image's metadata, or None when missing or unreadable."""
        path = Path(image_dir) / METADATA_FILE
        if not path.is_file():
            return None
        try:
            return ImageMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            self._logger.error(f"Invalid metadata in {path}: {e}")
            return None

    def write(self, image_dir: Path, metadata: ImageMetadata) -> MetadataResult:
        """
        Persist metadata, refusing to alter chain fields of an existing record.

        The protection flag is always recomputed from environment and
        container name.

        Args:
            image_dir: Image directory
            metadata: Full record to store

        Returns:
            The stored record, or a permission_denied failure
        """
        image_dir = Path(image_dir)
        existing = self.read(image_dir)
        if existing is not None:
            changed = [f for f in CHAIN_FIELDS if getattr(existing, f) != getattr(metadata, f)]
            if changed:
                return MetadataResult.fail(
                    ErrorKind.PERMISSION_DENIED,
                    f"Chain fields cannot change once written: {', '.join(changed)}",
                    resource=image_dir.name,
                    operation="update_metadata",
                    layer="image",
                    remediation="Build a new Image to record a different origin",
                )

        derived = self.derive_protection(metadata)
        if metadata.protected != derived:
            metadata = metadata.model_copy(update={"protected": derived})

        write_text_atomic(image_dir / METADATA_FILE, metadata.model_dump_json(indent=2))
        self._logger.debug(f"Wrote metadata for {metadata.image_name} ({metadata.build_status.value})")
        return MetadataResult.ok(metadata=metadata)

    def update(self, image_dir: Path, **changes) -> MetadataResult:
        """Apply field changes to the stored record."""
        existing = self.read(image_dir)
        if existing is None:
            return MetadataResult.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"No metadata for {Path(image_dir).name}",
                resource=Path(image_dir).name,
                operation="update_metadata",
                layer="image",
            )
        return self.write(image_dir, existing.model_copy(update=changes))

    def read_origin(self, custom_dir: Path) -> Optional[CustomOrigin]:
        path = Path(custom_dir) / ORIGIN_FILE
        if not path.is_file():
            return None
        try:
            return CustomOrigin.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (ValidationError, ValueError, OSError) as e:
            self._logger.error(f"Invalid origin record in {path}: {e}")
            return None

    def write_origin(self, custom_dir: Path, origin: CustomOrigin) -> None:
        write_text_atomic(Path(custom_dir) / ORIGIN_FILE, origin.model_dump_json(indent=2))
