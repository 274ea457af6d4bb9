# deck/components/engine/base.py
"""
Container engine adapter contract.

The rest of Deck talks to Docker or Podman only through ``ContainerEngine``.
Engine-specific output parsing lives in the variants; command syntax shared
by both engines lives here.
"""
import json
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from deck.components.execution.engine import ExecutionEngine, execution_engine
from deck.core.errors import EngineUnavailableError, ErrorKind, OperationResult
from deck.utils.logging import get_logger

logger = get_logger(__name__)

_RUNNING_STATES = {"running", "restarting"}
_HOST_PORT_PATTERN = re.compile(r":(\d+)->")

# stderr fragments meaning the engine itself could not be reached
_UNREACHABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
    "permission denied while trying to connect",
    "unable to connect to podman",
    "cannot connect to podman",
)
_NOT_FOUND_MARKERS = ("no such container", "no such object", "no container with name or id")


def is_unreachable_error(stderr: str) -> bool:
    """True when engine stderr says the daemon/service is unreachable."""
    text = (stderr or "").lower()
    return any(marker in text for marker in _UNREACHABLE_MARKERS)


def is_not_found_error(stderr: str) -> bool:
    text = (stderr or "").lower()
    return any(marker in text for marker in _NOT_FOUND_MARKERS)


class ContainerStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ABSENT = "absent"


class ContainerRecord(BaseModel):
    """Engine-reported view of a container. Never cached."""
    id: str = Field("", description="Container id")
    name: str = Field(..., description="Container name")
    image: str = Field("", description="Image reference")
    status: ContainerStatus = Field(ContainerStatus.ABSENT)
    state: str = Field("", description="Raw engine state string")
    ports: List[int] = Field(default_factory=list, description="Bound host ports")
    labels: Dict[str, str] = Field(default_factory=dict)
    created: Optional[datetime] = None


class EngineCommandResult(OperationResult):
    """Result of a single engine command."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


def status_from_state(state: Optional[str]) -> ContainerStatus:
    """Map a raw engine state to a container status."""
    if not state:
        return ContainerStatus.ABSENT
    return ContainerStatus.RUNNING if state.lower() in _RUNNING_STATES else ContainerStatus.STOPPED


def parse_host_ports(value: Any) -> List[int]:
    """
    Extract bound host ports from any of the shapes engines report.

    Handles ``"0.0.0.0:3000->3000/tcp"`` strings, podman port lists and
    inspect ``{"3000/tcp": [{"HostPort": "3000"}]}`` mappings.
    """
    ports: List[int] = []
    if not value:
        return ports
    if isinstance(value, str):
        ports = [int(p) for p in _HOST_PORT_PATTERN.findall(value)]
    elif isinstance(value, list):
        for entry in value:
            if isinstance(entry, dict) and entry.get("host_port"):
                ports.append(int(entry["host_port"]))
    elif isinstance(value, dict):
        for bindings in value.values():
            for binding in bindings or []:
                host_port = binding.get("HostPort") if isinstance(binding, dict) else None
                if host_port:
                    ports.append(int(host_port))
    return sorted(set(ports))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse the timestamp formats engines emit; None when unrecognised."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value).astimezone()
    text = str(value).strip()
    # Docker ps: "2024-05-01 10:00:00 +0000 UTC"
    match = re.match(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) ([+-]\d{4})", text)
    if match:
        return datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H:%M:%S %z")
    # Inspect: RFC 3339 with nanoseconds
    match = re.match(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.\d+)?(Z|[+-]\d{2}:\d{2})?", text)
    if match:
        suffix = match.group(2) or "+00:00"
        if suffix == "Z":
            suffix = "+00:00"
        return datetime.fromisoformat(match.group(1) + suffix)
    return None


class ContainerEngine:
    """
    Uniform operations over an installed container engine.

    Query methods and mutations raise ``EngineUnavailableError`` when the
    binary is missing, a command times out or the daemon cannot be reached.
    Queries also raise it for any other failure they cannot interpret, so a
    broken engine is never mistaken for "no containers". A mutation that runs
    but exits non-zero is reported as a failed ``EngineCommandResult``.
    """

    name: str = ""
    binary: str = ""

    def __init__(
        self,
        executor: Optional[ExecutionEngine] = None,
        command_timeout: float = 120.0,
        build_timeout: float = 1800.0,
    ):
        self._executor = executor or execution_engine
        self._command_timeout = command_timeout
        self._build_timeout = build_timeout
        self._logger = logger

    async def _run(
        self,
        args: List[str],
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
        operation: str = "",
        resource: Optional[str] = None,
    ) -> EngineCommandResult:
        stdout, stderr, code = await self._executor.execute_command(
            [self.binary, *args],
            cwd=cwd,
            timeout=timeout or self._command_timeout,
        )
        if code == 0:
            return EngineCommandResult.ok(stdout=stdout, stderr=stderr, exit_code=code)
        message = stderr.strip() or stdout.strip() or f"{self.binary} {args[0]} exited with {code}"
        if is_unreachable_error(stderr):
            self._logger.error(f"{self.name} is not reachable: {message}")
            raise EngineUnavailableError(message, command=" ".join([self.binary, *args]))
        return EngineCommandResult.fail(
            ErrorKind.OPERATION_FAILED,
            message,
            resource=resource,
            operation=operation or args[0],
            stdout=stdout,
            stderr=stderr,
            exit_code=code,
        )

    # --- Probing ---

    async def ping(self, timeout: float = 10.0) -> bool:
        """Return True if the engine daemon/service answers."""
        _, _, code = await self._executor.execute_command(
            [self.binary, "info", "--format", "json"], timeout=timeout
        )
        return code == 0

    # --- Queries ---

    async def get_info(self, name: str) -> Optional[ContainerRecord]:
        """
        Inspect a container; None when it does not exist.

        Raises:
            EngineUnavailableError: If the engine failed for any other reason.
        """
        result = await self._run(["container", "inspect", name], operation="inspect", resource=name)
        if not result.success:
            if is_not_found_error(result.stderr):
                return None
            raise EngineUnavailableError(
                f"{self.binary} could not inspect {name}: {result.message}",
                command=f"{self.binary} container inspect {name}",
            )
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            self._logger.error(f"Error parsing inspect output for {name}: {e}")
            return None
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return self._parse_inspect(data)

    async def exists(self, name: str) -> bool:
        return await self.get_info(name) is not None

    async def status(self, name: str) -> ContainerStatus:
        record = await self.get_info(name)
        return record.status if record else ContainerStatus.ABSENT

    async def list_all(self) -> List[ContainerRecord]:
        return await self._list(["ps", "-a", "--format", "json"])

    async def list_running(self) -> List[ContainerRecord]:
        return await self._list(["ps", "--filter", "status=running", "--format", "json"])

    async def _list(self, args: List[str]) -> List[ContainerRecord]:
        result = await self._run(args, operation="list")
        if not result.success:
            raise EngineUnavailableError(
                f"{self.binary} could not list containers: {result.message}",
                command=" ".join([self.binary, *args]),
            )
        return self._parse_list(result.stdout)

    # --- Mutations ---

    async def start(self, name: str) -> EngineCommandResult:
        return await self._run(["start", name], operation="start", resource=name)

    async def stop(self, name: str, force: bool = False) -> EngineCommandResult:
        args = ["stop", "--time", "0", name] if force else ["stop", name]
        return await self._run(args, operation="stop", resource=name)

    async def restart(self, name: str) -> EngineCommandResult:
        return await self._run(["restart", name], operation="restart", resource=name)

    async def exec(
        self,
        name: str,
        command: List[str],
        workdir: Optional[str] = None,
    ) -> EngineCommandResult:
        args = ["exec"]
        if workdir:
            args += ["--workdir", workdir]
        args += [name, *command]
        return await self._run(args, operation="exec", resource=name)

    async def logs(self, name: str, tail: int = 100) -> EngineCommandResult:
        return await self._run(["logs", "--tail", str(tail), name], operation="logs", resource=name)

    async def remove(self, name: str, force: bool = False) -> EngineCommandResult:
        args = ["rm", "-f", name] if force else ["rm", name]
        return await self._run(args, operation="remove", resource=name)

    async def build(self, workdir: Path, project_name: str) -> EngineCommandResult:
        """Build the images declared by the compose file in ``workdir``."""
        return await self._run(
            ["compose", "-p", project_name, "build", "--no-cache"],
            cwd=workdir,
            timeout=self._build_timeout,
            operation="build",
            resource=project_name,
        )

    async def create(self, workdir: Path, project_name: str) -> EngineCommandResult:
        """Create (without starting) the containers declared in ``workdir``."""
        return await self._run(
            ["compose", "-p", project_name, "up", "--no-start"],
            cwd=workdir,
            operation="create",
            resource=project_name,
        )

    # --- Parsing ---

    def _parse_inspect(self, data: Dict[str, Any]) -> ContainerRecord:
        config = data.get("Config") or {}
        state = data.get("State") or {}
        raw_state = state.get("Status", "") if isinstance(state, dict) else str(state)
        network_ports = (data.get("NetworkSettings") or {}).get("Ports")
        bindings = (data.get("HostConfig") or {}).get("PortBindings")
        return ContainerRecord(
            id=data.get("Id", ""),
            name=str(data.get("Name", "")).lstrip("/"),
            image=config.get("Image", "") or data.get("ImageName", ""),
            status=status_from_state(raw_state),
            state=raw_state,
            ports=parse_host_ports(network_ports) or parse_host_ports(bindings),
            labels=config.get("Labels") or {},
            created=parse_timestamp(data.get("Created")),
        )

    def _parse_list(self, output: str) -> List[ContainerRecord]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(binary={self.binary!r})"
