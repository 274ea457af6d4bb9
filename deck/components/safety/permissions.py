# deck/components/safety/permissions.py
"""
Permission guard for layer artifacts.

Every path inside an Image is either a protected build snapshot, the
runtime-modifiable ``.env`` file, or unrestricted. Templates are read-only,
Custom configurations belong to the user. Results never raise; a denial
carries a reason and a remediation.
"""
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import set_key, unset_key
from pydantic import BaseModel, Field

from deck.constants import (
    ENV_FILE,
    PROTECTED_CONFIG_FILES,
    REQUIRED_CONFIG_FILES,
    RUNTIME_VARIABLES,
    SYSTEM_VARIABLES,
)
from deck.core.environments import IMAGE_NAME_PATTERN, Layer, generate_image_name
from deck.core.errors import ErrorKind, OperationResult
from deck.utils.logging import get_logger

logger = get_logger(__name__)

EDIT_CUSTOM_HINT = "Edit the Custom copy instead and build a new Image"


class FileCategory(str, Enum):
    PROTECTED_CONFIG = "protected_config"
    RUNTIME_MODIFIABLE_ENV = "runtime_modifiable_env"
    UNRESTRICTED = "unrestricted"


class PermissionLevel(str, Enum):
    ALLOWED = "allowed"
    WARNING = "warning"
    DENIED = "denied"


class FileOperation(str, Enum):
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"
    MOVE = "move"


class DirectoryOperation(str, Enum):
    READ = "read"
    CREATE = "create"
    DELETE = "delete"
    RENAME = "rename"
    MODIFY_PERMISSIONS = "modify_permissions"


class ViolationType(str, Enum):
    PROTECTED_FILE_MODIFICATION = "protected_file_modification"
    DIRECTORY_RENAME = "directory_rename"
    BUILD_TIME_VARIABLE_MODIFICATION = "build_time_variable_modification"
    CORE_FILE_DELETION = "core_file_deletion"
    INVALID_DIRECTORY_NAME = "invalid_directory_name"


class PermissionResult(OperationResult):
    path: str = ""
    action: str = ""
    category: FileCategory = FileCategory.UNRESTRICTED
    level: PermissionLevel = PermissionLevel.ALLOWED
    suggestions: List[str] = Field(default_factory=list)


class EnvVariableCheck(BaseModel):
    key: str
    value: Optional[str] = None
    level: PermissionLevel
    reason: str


class EnvValidationResult(OperationResult):
    allowed: Dict[str, Optional[str]] = Field(default_factory=dict)
    denied: Dict[str, Optional[str]] = Field(default_factory=dict)
    details: List[EnvVariableCheck] = Field(default_factory=list)


class DirectoryNameResult(OperationResult):
    name: str = ""
    prefix: Optional[str] = None
    timestamp: Optional[datetime] = None
    suggested_name: Optional[str] = None


class PermissionSummary(BaseModel):
    image_name: str
    image_path: str
    is_valid_image_directory: bool = False
    protected_files: List[str] = Field(default_factory=list)
    modifiable_files: List[str] = Field(default_factory=list)
    runtime_variables: List[str] = Field(default_factory=list)
    guidance: List[str] = Field(default_factory=list)


class PermissionViolation(BaseModel):
    type: ViolationType
    path: str
    detail: str = ""


class PermissionGuidance(BaseModel):
    violation: PermissionViolation
    explanation: str
    steps: List[str] = Field(default_factory=list)
    alternatives: List[str] = Field(default_factory=list)


def _decide(
    path: str,
    operation: str,
    category: FileCategory,
    level: PermissionLevel,
    reason: str,
    layer: Optional[Layer] = None,
    remediation: Optional[str] = None,
    suggestions: Optional[List[str]] = None,
) -> PermissionResult:
    fields = dict(path=path, action=operation, category=category, level=level, suggestions=suggestions or [])
    if level == PermissionLevel.DENIED:
        return PermissionResult.fail(
            ErrorKind.PERMISSION_DENIED,
            reason,
            resource=path,
            operation=operation,
            layer=layer.value if layer else None,
            remediation=remediation,
            **fields,
        )
    result = PermissionResult.ok(reason, **fields)
    if level == PermissionLevel.WARNING:
        result.warnings.append(reason)
    return result


class PermissionGuard:
    """Classifies artifact paths and validates operations on them."""

    def __init__(self):
        self._logger = logger

    # --- Classification ---

    @staticmethod
    def classify(path: Union[str, Path]) -> FileCategory:
        name = Path(path).name
        if name in PROTECTED_CONFIG_FILES:
            return FileCategory.PROTECTED_CONFIG
        if name == ENV_FILE:
            return FileCategory.RUNTIME_MODIFIABLE_ENV
        return FileCategory.UNRESTRICTED

    @staticmethod
    def is_runtime_variable(key: str) -> bool:
        return key.upper() in RUNTIME_VARIABLES

    # --- Files ---

    def validate_file_permission(
        self,
        path: Union[str, Path],
        operation: FileOperation,
        layer: Layer = Layer.IMAGE,
    ) -> PermissionResult:
        """
        Decide whether ``operation`` on ``path`` is allowed inside ``layer``.

        Args:
            path: File path inside an artifact directory
            operation: The file operation attempted
            layer: Layer the artifact belongs to

        Returns:
            Allowed, warning (success with a warning) or denied (failure)
        """
        path_str = str(path)
        name = Path(path).name
        category = self.classify(path)
        op = operation.value

        if layer == Layer.TEMPLATE:
            if operation == FileOperation.READ:
                return _decide(path_str, op, category, PermissionLevel.ALLOWED, "Reading templates is allowed")
            return _decide(
                path_str, op, category, PermissionLevel.DENIED,
                "Templates are read-only and replaced on every sync",
                layer=layer,
                remediation="Create a Custom configuration from the template and edit that",
            )

        if layer == Layer.CUSTOM:
            return _decide(path_str, op, category, PermissionLevel.ALLOWED, "Custom configurations are user-owned")

        if category == FileCategory.PROTECTED_CONFIG:
            if operation == FileOperation.READ:
                return _decide(path_str, op, category, PermissionLevel.ALLOWED, "Reading protected files is allowed")
            if operation == FileOperation.CREATE:
                reason = f"Cannot create a file named like the protected file {name}"
            else:
                reason = f"{name} is a protected build snapshot and cannot be changed"
            return _decide(
                path_str, op, category, PermissionLevel.DENIED, reason,
                layer=layer,
                remediation=EDIT_CUSTOM_HINT,
                suggestions=["The snapshot guarantees the Image matches what was built"],
            )

        if category == FileCategory.RUNTIME_MODIFIABLE_ENV:
            if operation in (FileOperation.READ, FileOperation.CREATE):
                return _decide(path_str, op, category, PermissionLevel.ALLOWED, f"{op.capitalize()} of {ENV_FILE} is allowed")
            if operation == FileOperation.WRITE:
                return _decide(
                    path_str, op, category, PermissionLevel.WARNING,
                    f"{ENV_FILE} may be changed for runtime variables only",
                    suggestions=[f"Runtime variables: {', '.join(sorted(RUNTIME_VARIABLES))}"],
                )
            reason = (
                f"Deleting {ENV_FILE} loses the Image's environment"
                if operation == FileOperation.DELETE
                else f"Moving {ENV_FILE} breaks the Image layout"
            )
            return _decide(
                path_str, op, category, PermissionLevel.DENIED, reason,
                layer=layer,
                remediation=f"Edit values in {ENV_FILE} instead",
            )

        if operation in (FileOperation.DELETE, FileOperation.MOVE):
            return _decide(
                path_str, op, category, PermissionLevel.WARNING,
                f"{op.capitalize()} of {name} may break references to it",
            )
        return _decide(path_str, op, category, PermissionLevel.ALLOWED, f"{op.capitalize()} of regular files is allowed")

    # --- Directories ---

    def validate_directory_operation(
        self,
        path: Union[str, Path],
        operation: DirectoryOperation,
    ) -> PermissionResult:
        """Validate an operation on an Image directory itself."""
        path_str = str(path)
        op = operation.value
        category = FileCategory.UNRESTRICTED

        if operation == DirectoryOperation.READ:
            return _decide(path_str, op, category, PermissionLevel.ALLOWED, "Reading is not restricted")
        if operation == DirectoryOperation.CREATE:
            return _decide(
                path_str, op, category, PermissionLevel.WARNING,
                "Directories may be created but should follow the Image layout",
            )
        if operation == DirectoryOperation.DELETE:
            return _decide(
                path_str, op, category, PermissionLevel.DENIED,
                "Deleting an Image directory breaks the image to directory mapping",
                layer=Layer.IMAGE,
                remediation="Use 'deck images clean' to remove Images",
            )
        if operation == DirectoryOperation.RENAME:
            return _decide(
                path_str, op, category, PermissionLevel.DENIED,
                "Renaming an Image directory breaks the link between image name and directory",
                layer=Layer.IMAGE,
                remediation="Build a new Image from the Custom configuration instead",
            )
        return _decide(
            path_str, op, category, PermissionLevel.WARNING,
            "Changing permissions may affect container access",
        )

    # --- Environment variables ---

    def validate_env_file_changes(
        self,
        image_dir: Union[str, Path],
        changes: Dict[str, Optional[str]],
    ) -> EnvValidationResult:
        """
        Split proposed .env changes into allowed and denied keys.

        Runtime variables are allowed, system variables and everything else
        (build-time variables) are denied.
        """
        allowed: Dict[str, Optional[str]] = {}
        denied: Dict[str, Optional[str]] = {}
        details: List[EnvVariableCheck] = []

        for key, value in changes.items():
            upper = key.upper()
            if upper in RUNTIME_VARIABLES:
                level, reason = PermissionLevel.ALLOWED, "Runtime variable"
                allowed[key] = value
            elif upper in SYSTEM_VARIABLES:
                level, reason = PermissionLevel.DENIED, "System variables cannot be overridden"
                denied[key] = value
            else:
                level, reason = PermissionLevel.DENIED, "Build-time variable; the built Image would not reflect it"
                denied[key] = value
            details.append(EnvVariableCheck(key=key, value=value, level=level, reason=reason))

        if denied:
            self._logger.warning(f"Denied .env changes in {image_dir}: {', '.join(denied)}")
            return EnvValidationResult.fail(
                ErrorKind.PERMISSION_DENIED,
                f"Cannot change {', '.join(denied)} in an Image",
                resource=str(image_dir),
                operation="modify_env",
                layer=Layer.IMAGE.value,
                remediation=EDIT_CUSTOM_HINT,
                allowed=allowed,
                denied=denied,
                details=details,
            )
        return EnvValidationResult.ok(
            f"{len(allowed)} runtime variable(s) may be changed",
            allowed=allowed,
            details=details,
        )

    def apply_runtime_env_changes(
        self,
        image_dir: Union[str, Path],
        changes: Dict[str, Optional[str]],
    ) -> EnvValidationResult:
        """Validate, then write only whitelisted keys into the Image .env file."""
        result = self.validate_env_file_changes(image_dir, changes)
        if not result.success:
            return result

        env_path = Path(image_dir) / ENV_FILE
        if not env_path.exists():
            env_path.touch()
        for key, value in result.allowed.items():
            if value is None:
                unset_key(str(env_path), key)
            else:
                set_key(str(env_path), key, value, quote_mode="never")
        self._logger.info(f"Updated {', '.join(result.allowed)} in {env_path}")
        return result

    # --- Naming ---

    def validate_image_directory_name(
        self,
        name: str,
        images_root: Optional[Union[str, Path]] = None,
    ) -> DirectoryNameResult:
        """Check the ``<prefix>-YYYYMMDD-HHMM(-N)`` pattern and layer uniqueness."""
        match = IMAGE_NAME_PATTERN.match(name)
        if not match:
            prefix = re.sub(r"[^A-Za-z0-9_.-]+", "-", name).strip("-") or "image"
            suggested = generate_image_name(prefix, exists=self._exists_in(images_root))
            return DirectoryNameResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"'{name}' does not follow the prefix-YYYYMMDD-HHMM format",
                resource=name,
                operation="validate_name",
                layer=Layer.IMAGE.value,
                remediation=f"Use a name like {suggested}",
                name=name,
                suggested_name=suggested,
            )

        try:
            timestamp = datetime.strptime(f"{match.group('date')}{match.group('time')}", "%Y%m%d%H%M")
        except ValueError:
            return DirectoryNameResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"'{name}' carries an invalid timestamp",
                resource=name,
                operation="validate_name",
                layer=Layer.IMAGE.value,
                name=name,
                prefix=match.group("prefix"),
            )

        exists = self._exists_in(images_root)
        if exists is not None and exists(name):
            suggested = generate_image_name(match.group("prefix"), exists=exists)
            return DirectoryNameResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"An Image named '{name}' already exists",
                resource=name,
                operation="validate_name",
                layer=Layer.IMAGE.value,
                remediation=f"Use {suggested}",
                name=name,
                prefix=match.group("prefix"),
                timestamp=timestamp,
                suggested_name=suggested,
            )

        return DirectoryNameResult.ok(
            f"'{name}' is a valid Image name",
            name=name,
            prefix=match.group("prefix"),
            timestamp=timestamp,
        )

    @staticmethod
    def _exists_in(images_root: Optional[Union[str, Path]]):
        if images_root is None:
            return None
        root = Path(images_root)
        return lambda candidate: (root / candidate).exists()

    # --- Reporting ---

    def get_permission_summary(self, image_dir: Union[str, Path]) -> PermissionSummary:
        """List protected and modifiable files of an Image directory."""
        image_dir = Path(image_dir)
        summary = PermissionSummary(
            image_name=image_dir.name,
            image_path=str(image_dir),
            runtime_variables=sorted(RUNTIME_VARIABLES),
        )
        if not image_dir.is_dir():
            return summary

        summary.is_valid_image_directory = all((image_dir / f).is_file() for f in REQUIRED_CONFIG_FILES)
        for entry in sorted(image_dir.rglob("*")):
            if not entry.is_file():
                continue
            relative = str(entry.relative_to(image_dir))
            if self.classify(entry) == FileCategory.PROTECTED_CONFIG:
                summary.protected_files.append(relative)
            else:
                summary.modifiable_files.append(relative)

        summary.guidance = [
            "Protected files are a snapshot of the build configuration",
            f"Only runtime variables in {ENV_FILE} may change after the build",
            "To change anything else, edit the Custom configuration and build a new Image",
        ]
        return summary

    def get_permission_guidance(self, violation: PermissionViolation) -> PermissionGuidance:
        """Explain a violation and how to achieve the goal legitimately."""
        if violation.type == ViolationType.PROTECTED_FILE_MODIFICATION:
            return PermissionGuidance(
                violation=violation,
                explanation=f"{Path(violation.path).name} belongs to the build snapshot of this Image.",
                steps=[
                    "Open the Custom configuration the Image was built from",
                    "Make the change there",
                    "Run 'deck start --custom <name>' to build a new Image",
                ],
                alternatives=["Change runtime variables in .env if that is enough"],
            )
        if violation.type == ViolationType.DIRECTORY_RENAME:
            return PermissionGuidance(
                violation=violation,
                explanation="Image directory names link the directory to its image and containers.",
                steps=["Keep the existing name", "Build a new Image if a different name is needed"],
            )
        if violation.type == ViolationType.BUILD_TIME_VARIABLE_MODIFICATION:
            return PermissionGuidance(
                violation=violation,
                explanation="Build-time variables were baked into the Image when it was built.",
                steps=["Change the variable in the Custom configuration", "Build a new Image"],
                alternatives=[f"Runtime variables: {', '.join(sorted(RUNTIME_VARIABLES))}"],
            )
        if violation.type == ViolationType.CORE_FILE_DELETION:
            return PermissionGuidance(
                violation=violation,
                explanation="Deleting core files leaves the Image unusable.",
                steps=["Use 'deck images clean' to remove the whole Image"],
            )
        return PermissionGuidance(
            violation=violation,
            explanation="Image directory names must follow prefix-YYYYMMDD-HHMM.",
            steps=["Let deck generate the name when building"],
        )
