# deck/components/ports/models.py
"""
Models for port probing, conflicts and their resolutions.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from deck.core.errors import OperationResult


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class ResolutionAction(str, Enum):
    USE_ALTERNATIVE_PORT = "use_alternative_port"
    STOP_PROCESS = "stop_process"
    WAIT_FOR_RELEASE = "wait_for_release"
    IGNORE_AND_PROCEED = "ignore_and_proceed"
    MODIFY_CONFIGURATION = "modify_configuration"


class ProcessInfo(BaseModel):
    """Process found holding a port."""
    pid: int
    name: str = ""
    username: Optional[str] = None
    cmdline: str = ""
    is_system: bool = False
    can_signal: bool = True


class PortCheckResult(BaseModel):
    """Outcome of probing one port."""
    port: int
    protocol: Protocol = Protocol.TCP
    is_available: bool
    response_time_ms: float = 0.0
    error: Optional[str] = None
    process: Optional[ProcessInfo] = None
    connection_status: Optional[str] = None


class PortConflict(BaseModel):
    """A port that is in use, with what is known about the holder."""
    port: int
    protocol: Protocol = Protocol.TCP
    process: Optional[ProcessInfo] = None
    severity: ConflictSeverity = ConflictSeverity.MEDIUM
    service_type: str = "unknown"
    connection_status: Optional[str] = None
    description: str = ""


class ResolutionSuggestion(BaseModel):
    """One way to get past a port conflict."""
    action: ResolutionAction
    description: str
    risk: RiskLevel = RiskLevel.LOW
    priority: int = Field(0, description="Higher is preferred within a risk level")
    automatic: bool = False
    alternative_port: Optional[int] = None


class PortValidationResult(OperationResult):
    port: int = 0
    alternatives: List[int] = Field(default_factory=list)


class ProjectPortAllocation(OperationResult):
    project_type: str = ""
    ports: Dict[str, int] = Field(default_factory=dict)
    unresolved: List[str] = Field(default_factory=list)


class ProcessStopResult(OperationResult):
    port: int = 0
    pid: Optional[int] = None
