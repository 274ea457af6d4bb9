# deck/components/ports/allocator.py
"""
Port allocator.

Probes ports by binding them, finds free ports deterministically and
describes conflicts together with ranked ways out of them. Holds no state
between calls.
"""
import asyncio
import getpass
import socket
import time
from typing import Iterable, List, Optional, Set, Tuple

import psutil

from deck.components.ports.models import (
    ConflictSeverity,
    PortCheckResult,
    PortConflict,
    PortValidationResult,
    ProcessInfo,
    ProcessStopResult,
    ProjectPortAllocation,
    Protocol,
    ResolutionAction,
    ResolutionSuggestion,
    RiskLevel,
)
from deck.constants import (
    DEFAULT_PORT_MAPPINGS,
    DEFAULT_PORT_RANGE,
    MAX_PORT,
    PORT_PROBE_BATCH,
    PORT_SEARCH_WINDOW,
    PRIVILEGED_PORT_ALTERNATIVES,
    PRIVILEGED_PORT_MAX,
    SYSTEM_PROCESS_NAMES,
    WELL_KNOWN_PORTS,
)
from deck.core.errors import ErrorKind
from deck.utils.logging import get_logger

logger = get_logger(__name__)

_RELEASING_STATES = {"TIME_WAIT", "CLOSE_WAIT"}


def privileged_alternatives(port: int) -> List[int]:
    """Non-privileged ports to suggest instead of ``port``."""
    return list(PRIVILEGED_PORT_ALTERNATIVES.get(port, [port + 8000, port + 3000]))


class PortAllocator:
    """Stateless TCP/UDP port probing and allocation."""

    def __init__(
        self,
        probe_timeout: float = 1.0,
        allow_privileged: bool = False,
        range_start: int = DEFAULT_PORT_RANGE[0],
        range_end: int = DEFAULT_PORT_RANGE[1],
        search_window: int = PORT_SEARCH_WINDOW,
    ):
        self._probe_timeout = probe_timeout
        self._allow_privileged = allow_privileged
        self._range_start = range_start
        self._range_end = range_end
        self._search_window = search_window
        self._logger = logger

    @property
    def search_window(self) -> int:
        return self._search_window

    @property
    def allow_privileged(self) -> bool:
        return self._allow_privileged

    # --- Probing ---

    @staticmethod
    def _try_bind(port: int, protocol: Protocol) -> None:
        kind = socket.SOCK_STREAM if protocol == Protocol.TCP else socket.SOCK_DGRAM
        with socket.socket(socket.AF_INET, kind) as sock:
            sock.bind(("0.0.0.0", port))

    def _find_process(self, port: int, protocol: Protocol) -> Tuple[Optional[ProcessInfo], Optional[str]]:
        """Locate the process holding ``port``; (None, None) when not determinable."""
        try:
            connections = psutil.net_connections(kind=protocol.value)
        except (psutil.AccessDenied, OSError) as e:
            self._logger.debug(f"Cannot list connections: {e}")
            return None, None

        status = None
        for conn in connections:
            if not conn.laddr or conn.laddr.port != port:
                continue
            status = conn.status if conn.status and conn.status != psutil.CONN_NONE else status
            if conn.pid is None:
                continue
            return self._describe_process(conn.pid), status
        return None, status

    def _describe_process(self, pid: int) -> ProcessInfo:
        try:
            proc = psutil.Process(pid)
            name = proc.name()
            username = proc.username()
            cmdline = " ".join(proc.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return ProcessInfo(pid=pid, can_signal=False, is_system=pid < 1000)

        is_system = pid < 1000 or (username == "root" and name in SYSTEM_PROCESS_NAMES)
        current_user = getpass.getuser()
        can_signal = current_user == "root" or username == current_user
        return ProcessInfo(
            pid=pid,
            name=name,
            username=username,
            cmdline=cmdline,
            is_system=is_system,
            can_signal=can_signal,
        )

    async def check_port(
        self,
        port: int,
        protocol: Protocol = Protocol.TCP,
        include_process: bool = True,
    ) -> PortCheckResult:
        """
        Probe a port by binding it on all interfaces.

        Args:
            port: Port to probe
            protocol: tcp or udp
            include_process: Look up the holder when the port is taken

        Returns:
            Availability, probe time and the occupying process if known
        """
        if not 1 <= port <= MAX_PORT:
            return PortCheckResult(port=port, protocol=protocol, is_available=False, error="invalid port")

        started = time.perf_counter()
        error = None
        try:
            await asyncio.wait_for(asyncio.to_thread(self._try_bind, port, protocol), timeout=self._probe_timeout)
            available = True
        except asyncio.TimeoutError:
            available, error = False, "timeout"
        except OSError as e:
            available, error = False, e.strerror or str(e)
        elapsed_ms = (time.perf_counter() - started) * 1000

        result = PortCheckResult(
            port=port,
            protocol=protocol,
            is_available=available,
            response_time_ms=round(elapsed_ms, 3),
            error=error,
        )
        if not available and include_process and error != "timeout":
            result.process, result.connection_status = await asyncio.to_thread(self._find_process, port, protocol)
        return result

    async def check_ports(
        self,
        ports: Iterable[int],
        protocol: Protocol = Protocol.TCP,
        include_process: bool = False,
    ) -> List[PortCheckResult]:
        """Probe several ports concurrently; results keep the input order."""
        return list(await asyncio.gather(
            *(self.check_port(p, protocol, include_process) for p in ports)
        ))

    # --- Allocation ---

    def _is_candidate(self, port: int, exclude: Set[int]) -> bool:
        if not 1 <= port <= MAX_PORT or port in exclude:
            return False
        return self._allow_privileged or port > PRIVILEGED_PORT_MAX

    async def find_available_port(
        self,
        preferred: Optional[int] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        protocol: Protocol = Protocol.TCP,
        exclude: Optional[Iterable[int]] = None,
    ) -> Optional[int]:
        """
        Return ``preferred`` if free, else the lowest free port in [start, end].

        The range is probed in concurrent batches but the answer is always
        the lowest free port, independent of probe completion order.

        Returns:
            A free port, or None when the range is exhausted
        """
        start = self._range_start if start is None else start
        end = self._range_end if end is None else end
        excluded = set(exclude or ())

        if preferred is not None and self._is_candidate(preferred, excluded):
            if (await self.check_port(preferred, protocol, include_process=False)).is_available:
                return preferred

        candidates = [
            p for p in range(max(start, 1), min(end, MAX_PORT) + 1)
            if p != preferred and self._is_candidate(p, excluded)
        ]
        for i in range(0, len(candidates), PORT_PROBE_BATCH):
            batch = candidates[i:i + PORT_PROBE_BATCH]
            for result in await self.check_ports(batch, protocol):
                if result.is_available:
                    return result.port

        self._logger.warning(f"No free {protocol.value} port in {start}-{end}")
        return None

    async def allocate_project_ports(
        self,
        project_type: str,
        port_types: Optional[List[str]] = None,
    ) -> ProjectPortAllocation:
        """
        Map semantic port roles of a project type to concrete free ports.

        Args:
            project_type: tauri, flutter, avalonia, dotnet, python or node
            port_types: Roles to allocate; all roles of the type by default

        Returns:
            The role to port mapping; a port_conflict failure if a role
            could not be placed
        """
        mappings = DEFAULT_PORT_MAPPINGS.get(project_type.lower())
        if mappings is None:
            return ProjectPortAllocation.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"Unknown project type: {project_type}",
                resource=project_type,
                operation="allocate_ports",
                remediation=f"Use one of: {', '.join(DEFAULT_PORT_MAPPINGS)}",
                project_type=project_type,
            )

        allocated = {}
        unresolved = []
        warnings = []
        used: Set[int] = set()
        for role in port_types or list(mappings):
            preferred = mappings.get(role)
            if preferred is None:
                warnings.append(f"No default port for role '{role}' in {project_type}")
                continue
            port = await self.find_available_port(
                preferred, preferred, preferred + self._search_window, exclude=used
            )
            if port is None:
                unresolved.append(role)
                continue
            if port != preferred:
                self._logger.warning(f"{role} port {preferred} is busy, using {port}")
            allocated[role] = port
            used.add(port)

        if unresolved:
            return ProjectPortAllocation.fail(
                ErrorKind.PORT_CONFLICT,
                f"No free port for: {', '.join(unresolved)}",
                resource=project_type,
                operation="allocate_ports",
                project_type=project_type,
                ports=allocated,
                unresolved=unresolved,
                warnings=warnings,
            )
        return ProjectPortAllocation.ok(
            f"Allocated {len(allocated)} ports for {project_type}",
            project_type=project_type,
            ports=allocated,
            warnings=warnings,
        )

    # --- Conflicts ---

    async def detect_port_conflict(
        self, port: int, protocol: Protocol = Protocol.TCP
    ) -> Optional[PortConflict]:
        """Describe who holds ``port``; None when it is free."""
        check = await self.check_port(port, protocol, include_process=True)
        if check.is_available:
            return None

        process = check.process
        if process is None:
            severity = ConflictSeverity.HIGH
        elif process.is_system:
            severity = ConflictSeverity.CRITICAL
        elif not process.can_signal:
            severity = ConflictSeverity.HIGH
        else:
            severity = ConflictSeverity.MEDIUM

        service_type = WELL_KNOWN_PORTS.get(port) or (process.name if process and process.name else "unknown")
        holder = f"{process.name or 'pid'} ({process.pid})" if process else "an unknown process"
        return PortConflict(
            port=port,
            protocol=protocol,
            process=process,
            severity=severity,
            service_type=service_type,
            connection_status=check.connection_status,
            description=f"Port {port}/{protocol.value} is in use by {holder}",
        )

    async def get_resolution_suggestions(self, conflict: PortConflict) -> List[ResolutionSuggestion]:
        """Ranked remediation options: lowest risk first, then highest priority."""
        suggestions: List[ResolutionSuggestion] = []

        alternative = await self.find_available_port(
            None, conflict.port + 1, conflict.port + self._search_window, conflict.protocol
        )
        if alternative is not None:
            suggestions.append(ResolutionSuggestion(
                action=ResolutionAction.USE_ALTERNATIVE_PORT,
                description=f"Use port {alternative} instead",
                risk=RiskLevel.NONE,
                priority=100,
                automatic=True,
                alternative_port=alternative,
            ))

        if conflict.process is not None:
            system = conflict.process.is_system
            suggestions.append(ResolutionSuggestion(
                action=ResolutionAction.STOP_PROCESS,
                description=f"Stop {conflict.process.name or 'process'} (pid {conflict.process.pid})",
                risk=RiskLevel.HIGH if system else RiskLevel.LOW,
                priority=20 if system else 80,
            ))

        if conflict.connection_status in _RELEASING_STATES:
            suggestions.append(ResolutionSuggestion(
                action=ResolutionAction.WAIT_FOR_RELEASE,
                description=f"Wait for the {conflict.connection_status} connection to close",
                risk=RiskLevel.NONE,
                priority=60,
            ))

        if conflict.port > PRIVILEGED_PORT_MAX:
            suggestions.append(ResolutionSuggestion(
                action=ResolutionAction.IGNORE_AND_PROCEED,
                description="Ignore the conflict and start anyway",
                risk=RiskLevel.MEDIUM,
                priority=30,
            ))

        suggestions.append(ResolutionSuggestion(
            action=ResolutionAction.MODIFY_CONFIGURATION,
            description="Change the port in the configuration .env file",
            risk=RiskLevel.LOW,
            priority=10,
        ))

        suggestions.sort(key=lambda s: (s.risk.rank, -s.priority))
        return suggestions

    async def stop_process_using_port(
        self,
        port: int,
        protocol: Protocol = Protocol.TCP,
        force: bool = False,
    ) -> ProcessStopResult:
        """
        Best-effort stop of whatever holds ``port``. Never raises.
        """
        process, _ = await asyncio.to_thread(self._find_process, port, protocol)
        if process is None:
            return ProcessStopResult.fail(
                ErrorKind.RESOURCE_NOT_FOUND,
                f"No process found using port {port}",
                resource=str(port),
                operation="stop_process",
                port=port,
            )
        try:
            await asyncio.to_thread(self._terminate, process.pid, force)
        except psutil.NoSuchProcess:
            return ProcessStopResult.ok(f"Process {process.pid} already exited", port=port, pid=process.pid)
        except psutil.AccessDenied:
            return ProcessStopResult.fail(
                ErrorKind.PERMISSION_DENIED,
                f"Not permitted to stop process {process.pid} on port {port}",
                resource=str(port),
                operation="stop_process",
                remediation="Use an alternative port instead",
                port=port,
                pid=process.pid,
            )
        except Exception as e:
            self._logger.exception(f"Error stopping process on port {port}")
            return ProcessStopResult.fail(
                ErrorKind.OPERATION_FAILED, str(e), resource=str(port), operation="stop_process",
                port=port, pid=process.pid,
            )
        self._logger.info(f"Stopped process {process.pid} using port {port}")
        return ProcessStopResult.ok(f"Stopped process {process.pid}", port=port, pid=process.pid)

    @staticmethod
    def _terminate(pid: int, force: bool) -> None:
        proc = psutil.Process(pid)
        if force:
            proc.kill()
            proc.wait(timeout=5)
            return
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except psutil.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=5)

    # --- Validation ---

    def validate_port(self, port: int) -> PortValidationResult:
        """Reject out-of-range ports and, unless allowed, privileged ones."""
        if not 1 <= port <= MAX_PORT:
            return PortValidationResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"Port {port} is outside 1-{MAX_PORT}",
                resource=str(port),
                operation="validate_port",
                port=port,
            )
        if port <= PRIVILEGED_PORT_MAX and not self._allow_privileged:
            alternatives = privileged_alternatives(port)
            return PortValidationResult.fail(
                ErrorKind.CONFIGURATION_INVALID,
                f"Port {port} is privileged (1-{PRIVILEGED_PORT_MAX}) and needs elevated permissions",
                resource=str(port),
                operation="validate_port",
                remediation=f"Use one of {', '.join(map(str, alternatives))} or allow privileged ports",
                port=port,
                alternatives=alternatives,
            )
        return PortValidationResult.ok(f"Port {port} is valid", port=port)
