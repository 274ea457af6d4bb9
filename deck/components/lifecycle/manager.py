# deck/components/lifecycle/manager.py
"""
Container lifecycle engine.

A start request is resolved against the container's current state:

    running                  -> nothing to do, report how to attach
    stopped                  -> check its bound ports, then a plain start
    image only, no container -> resolve .env ports, create, start
    nothing                  -> one build, then the image-only path

Container state is always read fresh from the engine.
"""
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import Field

from deck.components.engine.base import ContainerEngine, ContainerRecord, ContainerStatus, EngineCommandResult
from deck.components.ports.allocator import PortAllocator
from deck.components.ports.models import PortConflict, ResolutionSuggestion
from deck.constants import DEFAULT_PRODUCTION_PATTERNS, ENV_FILE
from deck.core.environments import EnvironmentType, is_protected
from deck.core.errors import EngineUnavailableError, ErrorKind, OperationResult
from deck.utils.env_files import port_variables, read_env, update_env
from deck.utils.logging import get_logger

logger = get_logger(__name__)

BuildCallback = Callable[[], Awaitable[OperationResult]]


class LifecycleState(str, Enum):
    RUNNING = "running"
    STOPPED_EXISTS = "stopped_exists"
    IMAGE_ONLY_NO_CONTAINER = "image_only_no_container"
    NOTHING_EXISTS = "nothing_exists"


class StartMode(str, Enum):
    ALREADY_RUNNING = "already_running"
    STARTED_EXISTING = "started_existing"
    CREATED_AND_STARTED = "created_and_started"
    BUILT_AND_STARTED = "built_and_started"


class LifecycleResult(OperationResult):
    container_name: str = ""
    mode: Optional[StartMode] = None
    prior_state: Optional[LifecycleState] = None
    final_state: Optional[LifecycleState] = None
    elapsed_seconds: float = 0.0
    hint: Optional[str] = None
    conflicts: List[PortConflict] = Field(default_factory=list)
    suggestions: Dict[int, List[ResolutionSuggestion]] = Field(default_factory=dict)
    reassigned_ports: Dict[str, int] = Field(default_factory=dict)


class LogsResult(OperationResult):
    container_name: str = ""
    output: str = ""


class ShellResult(OperationResult):
    container_name: str = ""
    argv: List[str] = Field(default_factory=list)


class ContainerListResult(OperationResult):
    containers: List[ContainerRecord] = Field(default_factory=list)


def _engine_unavailable(result_cls, error: EngineUnavailableError, resource: str, operation: str, **fields):
    return result_cls.fail(
        ErrorKind.ENGINE_UNAVAILABLE,
        str(error),
        resource=resource,
        operation=operation,
        remediation="Make sure Docker or Podman is installed and running",
        **fields,
    )


class ContainerLifecycleEngine:
    """Smart start/stop/restart over a single container name."""

    def __init__(
        self,
        engine: Optional[ContainerEngine],
        port_allocator: Optional[PortAllocator] = None,
        production_patterns: Optional[Iterable[str]] = None,
    ):
        self._engine = engine
        self._ports = port_allocator or PortAllocator()
        self._production_patterns = list(production_patterns or DEFAULT_PRODUCTION_PATTERNS)
        self._logger = logger

    @property
    def engine(self) -> Optional[ContainerEngine]:
        return self._engine

    def is_protected(self, container_name: str, environment: Optional[EnvironmentType] = None) -> bool:
        return is_protected(environment, container_name, self._production_patterns)

    def _no_engine(self, result_cls, resource: str, operation: str, **fields):
        return result_cls.fail(
            ErrorKind.ENGINE_UNAVAILABLE,
            "No container engine is available",
            resource=resource,
            operation=operation,
            remediation="Install Docker or Podman and make sure it is running",
            **fields,
        )

    async def detect_state(self, container_name: str, image_built: bool) -> LifecycleState:
        """
        Read the container's current state from the engine.

        Raises:
            EngineUnavailableError: If the engine cannot be queried.
        """
        record = await self._engine.get_info(container_name)
        if record is None:
            return LifecycleState.IMAGE_ONLY_NO_CONTAINER if image_built else LifecycleState.NOTHING_EXISTS
        if record.status == ContainerStatus.RUNNING:
            return LifecycleState.RUNNING
        return LifecycleState.STOPPED_EXISTS

    # --- Start ---

    async def smart_start(
        self,
        container_name: str,
        workdir: Path,
        image_built: bool,
        build: Optional[BuildCallback] = None,
        project_name: Optional[str] = None,
    ) -> LifecycleResult:
        """
        Bring ``container_name`` to running by the cheapest path.

        Args:
            container_name: Container to start
            workdir: Image directory holding the compose file and .env
            image_built: Whether the image for this directory has been built
            build: Called exactly once when nothing exists yet
            project_name: Compose project name; the container name by default

        Returns:
            Result carrying the chosen mode, prior state and elapsed time
        """
        started = time.perf_counter()
        project_name = project_name or container_name

        def _finish(result: LifecycleResult) -> LifecycleResult:
            result.container_name = container_name
            result.elapsed_seconds = round(time.perf_counter() - started, 3)
            if result.success:
                self._logger.info(
                    f"{container_name}: {result.prior_state.value} -> running "
                    f"({result.mode.value}, {result.elapsed_seconds:.2f}s)"
                )
            return result

        if self._engine is None:
            return _finish(self._no_engine(LifecycleResult, container_name, "start"))

        try:
            state = await self.detect_state(container_name, image_built)
            self._logger.debug(f"{container_name} is in state {state.value}")

            if state == LifecycleState.RUNNING:
                return _finish(LifecycleResult.ok(
                    f"{container_name} is already running",
                    mode=StartMode.ALREADY_RUNNING,
                    prior_state=state,
                    final_state=LifecycleState.RUNNING,
                    hint=f"Attach with: {self._engine.binary} exec -it {container_name} /bin/bash",
                ))

            if state == LifecycleState.STOPPED_EXISTS:
                return _finish(await self._start_existing(container_name, state))

            mode = StartMode.CREATED_AND_STARTED
            if state == LifecycleState.NOTHING_EXISTS:
                if build is None:
                    return _finish(LifecycleResult.fail(
                        ErrorKind.CONFIGURATION_INVALID,
                        f"Nothing exists for {container_name} and no build was provided",
                        resource=container_name,
                        operation="start",
                        prior_state=state,
                    ))
                build_result = await build()
                if not build_result.success:
                    return _finish(LifecycleResult.from_error(
                        build_result.error, prior_state=state, warnings=build_result.warnings
                    ))
                mode = StartMode.BUILT_AND_STARTED

            return _finish(await self._create_and_start(container_name, workdir, project_name, state, mode))

        except EngineUnavailableError as e:
            self._logger.error(f"Engine unavailable while starting {container_name}: {e}")
            return _finish(_engine_unavailable(LifecycleResult, e, container_name, "start"))

    async def _start_existing(self, container_name: str, state: LifecycleState) -> LifecycleResult:
        record = await self._engine.get_info(container_name)
        bound_ports = record.ports if record else []
        conflict_result = await self._check_conflicts(container_name, bound_ports, state)
        if conflict_result is not None:
            return conflict_result

        outcome = await self._engine.start(container_name)
        if not outcome.success:
            return self._from_engine_failure(outcome, prior_state=state)
        return LifecycleResult.ok(
            f"Started existing container {container_name}",
            mode=StartMode.STARTED_EXISTING,
            prior_state=state,
            final_state=LifecycleState.RUNNING,
        )

    async def _create_and_start(
        self,
        container_name: str,
        workdir: Path,
        project_name: str,
        state: LifecycleState,
        mode: StartMode,
    ) -> LifecycleResult:
        reassigned, failure = await self._resolve_env_ports(container_name, Path(workdir), state)
        if failure is not None:
            return failure

        created = await self._engine.create(Path(workdir), project_name)
        if not created.success:
            return self._from_engine_failure(created, prior_state=state)

        outcome = await self._engine.start(container_name)
        if not outcome.success:
            return self._from_engine_failure(outcome, prior_state=state)

        warnings = [f"{key} reassigned to {port}" for key, port in reassigned.items()]
        return LifecycleResult.ok(
            f"Created and started {container_name}",
            mode=mode,
            prior_state=state,
            final_state=LifecycleState.RUNNING,
            reassigned_ports=reassigned,
            warnings=warnings,
        )

    async def _check_conflicts(
        self, container_name: str, ports: List[int], state: LifecycleState
    ) -> Optional[LifecycleResult]:
        """Return a port_conflict result if any bound host port is taken."""
        if not ports:
            return None
        conflicts = []
        for check in await self._ports.check_ports(ports):
            if check.is_available:
                continue
            conflict = await self._ports.detect_port_conflict(check.port, check.protocol)
            if conflict is not None:
                conflicts.append(conflict)
        if not conflicts:
            return None

        suggestions = {c.port: await self._ports.get_resolution_suggestions(c) for c in conflicts}
        busy = ", ".join(str(c.port) for c in conflicts)
        return LifecycleResult.fail(
            ErrorKind.PORT_CONFLICT,
            f"Port(s) {busy} needed by {container_name} are in use",
            resource=container_name,
            operation="start",
            remediation="Free the port(s) or remove the container so it is recreated with new ports",
            prior_state=state,
            conflicts=conflicts,
            suggestions=suggestions,
        )

    async def _resolve_env_ports(self, container_name: str, workdir: Path, state: LifecycleState):
        """
        Move busy runtime port variables in the artifact .env to free ports.

        Returns:
            (reassigned ports, failure result or None)
        """
        env_path = workdir / ENV_FILE
        ports = port_variables(read_env(env_path), runtime_only=True)
        if not ports:
            return {}, None

        checks = await self._ports.check_ports(list(ports.values()))
        used = set(ports.values())
        reassigned: Dict[str, int] = {}
        for (key, port), check in zip(ports.items(), checks):
            if check.is_available:
                continue
            replacement = await self._ports.find_available_port(
                None, port + 1, port + self._ports.search_window, exclude=used
            )
            if replacement is None:
                conflict = await self._ports.detect_port_conflict(port)
                conflicts = [conflict] if conflict else []
                return reassigned, LifecycleResult.fail(
                    ErrorKind.PORT_CONFLICT,
                    f"{key}={port} is in use and no free port was found nearby",
                    resource=container_name,
                    operation="create",
                    remediation=f"Free port {port} or change {key} in {env_path}",
                    prior_state=state,
                    conflicts=conflicts,
                    suggestions={c.port: await self._ports.get_resolution_suggestions(c) for c in conflicts},
                )
            self._logger.warning(f"{key} {port} is busy, using {replacement}")
            reassigned[key] = replacement
            used.add(replacement)

        if reassigned:
            update_env(env_path, reassigned)
        return reassigned, None

    def _from_engine_failure(self, outcome: EngineCommandResult, **fields) -> LifecycleResult:
        return LifecycleResult.from_error(outcome.error, **fields)

    # --- Stop / restart / remove ---

    async def stop(self, container_name: str, force: bool = False) -> LifecycleResult:
        """Stop a running container; stopping a stopped one is a no-op."""
        if self._engine is None:
            return self._no_engine(LifecycleResult, container_name, "stop", container_name=container_name)
        try:
            record = await self._engine.get_info(container_name)
            if record is None:
                return self._not_found(container_name, "stop")
            if record.status != ContainerStatus.RUNNING:
                return LifecycleResult.ok(
                    f"{container_name} is already stopped",
                    container_name=container_name,
                    prior_state=LifecycleState.STOPPED_EXISTS,
                    final_state=LifecycleState.STOPPED_EXISTS,
                )
            outcome = await self._engine.stop(container_name, force=force)
        except EngineUnavailableError as e:
            return _engine_unavailable(LifecycleResult, e, container_name, "stop", container_name=container_name)

        if not outcome.success:
            return self._from_engine_failure(outcome, container_name=container_name)
        self._logger.info(f"Stopped {container_name}")
        return LifecycleResult.ok(
            f"Stopped {container_name}",
            container_name=container_name,
            prior_state=LifecycleState.RUNNING,
            final_state=LifecycleState.STOPPED_EXISTS,
        )

    async def restart(self, container_name: str) -> LifecycleResult:
        """Restart an existing container; never creates one."""
        if self._engine is None:
            return self._no_engine(LifecycleResult, container_name, "restart", container_name=container_name)
        try:
            record = await self._engine.get_info(container_name)
            if record is None:
                return self._not_found(container_name, "restart")
            prior = LifecycleState.RUNNING if record.status == ContainerStatus.RUNNING else LifecycleState.STOPPED_EXISTS
            outcome = await self._engine.restart(container_name)
        except EngineUnavailableError as e:
            return _engine_unavailable(LifecycleResult, e, container_name, "restart", container_name=container_name)

        if not outcome.success:
            return self._from_engine_failure(outcome, container_name=container_name, prior_state=prior)
        self._logger.info(f"Restarted {container_name}")
        return LifecycleResult.ok(
            f"Restarted {container_name}",
            container_name=container_name,
            prior_state=prior,
            final_state=LifecycleState.RUNNING,
        )

    async def remove(
        self,
        container_name: str,
        force: bool = True,
        allow_protected: bool = False,
        environment: Optional[EnvironmentType] = None,
    ) -> LifecycleResult:
        """
        Remove a container. Missing containers count as removed.

        Args:
            container_name: Container to remove
            force: Remove even if running
            allow_protected: The caller obtained explicit confirmation for a
                production container
            environment: Environment recorded for the container, when known
        """
        if not allow_protected and self.is_protected(container_name, environment):
            return LifecycleResult.fail(
                ErrorKind.PRODUCTION_PROTECTED,
                f"{container_name} is a protected production container",
                resource=container_name,
                operation="remove",
                remediation="Confirm by typing its name in 'deck rm' or 'deck images clean'",
                container_name=container_name,
            )
        if self._engine is None:
            return self._no_engine(LifecycleResult, container_name, "remove", container_name=container_name)
        try:
            record = await self._engine.get_info(container_name)
            if record is None:
                return LifecycleResult.ok(f"{container_name} does not exist", container_name=container_name)
            if record.status == ContainerStatus.RUNNING and not force:
                return LifecycleResult.fail(
                    ErrorKind.OPERATION_FAILED,
                    f"{container_name} is running",
                    resource=container_name,
                    operation="remove",
                    remediation=f"Stop it with 'deck stop {container_name}' or pass --force",
                    container_name=container_name,
                    prior_state=LifecycleState.RUNNING,
                )
            outcome = await self._engine.remove(container_name, force=force)
        except EngineUnavailableError as e:
            return _engine_unavailable(LifecycleResult, e, container_name, "remove", container_name=container_name)

        if not outcome.success:
            return self._from_engine_failure(outcome, container_name=container_name)
        self._logger.info(f"Removed container {container_name}")
        return LifecycleResult.ok(f"Removed {container_name}", container_name=container_name)

    # --- Inspection ---

    async def logs(self, container_name: str, tail: int = 100) -> LogsResult:
        if self._engine is None:
            return self._no_engine(LogsResult, container_name, "logs", container_name=container_name)
        try:
            if not await self._engine.exists(container_name):
                return LogsResult.fail(
                    ErrorKind.RESOURCE_NOT_FOUND,
                    f"Container {container_name} does not exist",
                    resource=container_name,
                    operation="logs",
                    container_name=container_name,
                )
            outcome = await self._engine.logs(container_name, tail=tail)
        except EngineUnavailableError as e:
            return _engine_unavailable(LogsResult, e, container_name, "logs", container_name=container_name)

        if not outcome.success:
            return LogsResult.from_error(outcome.error, container_name=container_name)
        # Engines write container stderr to our stderr
        return LogsResult.ok(container_name=container_name, output=outcome.stdout + outcome.stderr)

    async def exec_command(self, container_name: str, command: List[str]) -> LogsResult:
        """Run a command inside a running container and capture its output."""
        if self._engine is None:
            return self._no_engine(LogsResult, container_name, "exec", container_name=container_name)
        try:
            record = await self._engine.get_info(container_name)
            if record is None or record.status != ContainerStatus.RUNNING:
                return LogsResult.fail(
                    ErrorKind.OPERATION_FAILED,
                    f"{container_name} is not running",
                    resource=container_name,
                    operation="exec",
                    remediation="Start it first with 'deck start --image <image>'",
                    container_name=container_name,
                )
            outcome = await self._engine.exec(container_name, command)
        except EngineUnavailableError as e:
            return _engine_unavailable(LogsResult, e, container_name, "exec", container_name=container_name)

        if not outcome.success:
            return LogsResult.from_error(outcome.error, container_name=container_name, output=outcome.stdout)
        return LogsResult.ok(container_name=container_name, output=outcome.stdout)

    async def attach_command(self, container_name: str, shell: str = "/bin/bash") -> ShellResult:
        """
        Build the interactive ``exec -it`` command line for a running container.

        The caller runs it attached to the terminal; nothing is executed here.
        """
        if self._engine is None:
            return self._no_engine(ShellResult, container_name, "shell", container_name=container_name)
        try:
            record = await self._engine.get_info(container_name)
        except EngineUnavailableError as e:
            return _engine_unavailable(ShellResult, e, container_name, "shell", container_name=container_name)

        if record is None or record.status != ContainerStatus.RUNNING:
            return ShellResult.fail(
                ErrorKind.OPERATION_FAILED,
                f"{container_name} is not running",
                resource=container_name,
                operation="shell",
                remediation="Start it first with 'deck start --image <image>'",
                container_name=container_name,
            )
        return ShellResult.ok(
            container_name=container_name,
            argv=[self._engine.binary, "exec", "-it", container_name, shell],
        )

    async def list_project_containers(
        self,
        names: Optional[Iterable[str]] = None,
        include_stopped: bool = True,
    ) -> ContainerListResult:
        """
        List containers, optionally limited to the given project container names.
        """
        if self._engine is None:
            return self._no_engine(ContainerListResult, "containers", "list")
        try:
            records = await (self._engine.list_all() if include_stopped else self._engine.list_running())
        except EngineUnavailableError as e:
            return _engine_unavailable(ContainerListResult, e, "containers", "list")

        if names is not None:
            wanted = set(names)
            records = [r for r in records if r.name in wanted]
        return ContainerListResult.ok(f"{len(records)} container(s)", containers=records)

    @staticmethod
    def _not_found(container_name: str, operation: str) -> LifecycleResult:
        return LifecycleResult.fail(
            ErrorKind.RESOURCE_NOT_FOUND,
            f"Container {container_name} does not exist",
            resource=container_name,
            operation=operation,
            remediation="Start it first with 'deck start'",
            container_name=container_name,
        )
