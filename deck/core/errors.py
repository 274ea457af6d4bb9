# deck/core/errors.py
"""
Error kinds and result types shared by every Deck component.

Expected failures (a busy port, a protected file, an unreachable engine) are
returned as results carrying a ``DeckError`` instead of being raised, so the
CLI can render them without re-querying state.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Categories of failure a Deck operation can report."""
    CONFIGURATION_INVALID = "configuration_invalid"
    PORT_CONFLICT = "port_conflict"
    PERMISSION_DENIED = "permission_denied"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    NETWORK_UNREACHABLE = "network_unreachable"
    PRODUCTION_PROTECTED = "production_protected"
    RESOURCE_NOT_FOUND = "resource_not_found"
    OPERATION_FAILED = "operation_failed"


class DeckError(BaseModel):
    """A failure with enough context to render it."""
    kind: ErrorKind = Field(..., description="Category of the failure")
    message: str = Field(..., description="Human readable description")
    resource: Optional[str] = Field(None, description="Name of the affected resource")
    operation: Optional[str] = Field(None, description="Operation that was attempted")
    layer: Optional[str] = Field(None, description="Layer the resource belongs to")
    remediation: Optional[str] = Field(None, description="Suggested next step")

    def __str__(self) -> str:
        text = f"[{self.kind.value}] {self.message}"
        if self.remediation:
            text += f" ({self.remediation})"
        return text


class OperationResult(BaseModel):
    """Base result of a Deck operation."""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field("", description="Summary for display")
    error: Optional[DeckError] = Field(None, description="Failure details when success is False")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal problems")

    @classmethod
    def ok(cls, message: str = "", **fields):
        return cls(success=True, message=message, **fields)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        resource: Optional[str] = None,
        operation: Optional[str] = None,
        layer: Optional[str] = None,
        remediation: Optional[str] = None,
        **fields,
    ):
        error = DeckError(
            kind=kind,
            message=message,
            resource=resource,
            operation=operation,
            layer=layer,
            remediation=remediation,
        )
        return cls(success=False, message=message, error=error, **fields)

    @classmethod
    def from_error(cls, error: DeckError, **fields):
        return cls(success=False, message=error.message, error=error, **fields)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


class EngineUnavailableError(Exception):
    """Raised when the container engine cannot be reached or timed out."""

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(message)
        self.command = command
