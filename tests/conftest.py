# tests/conftest.py
"""
Common test fixtures for Deck.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from deck.components.engine.base import ContainerEngine, ContainerRecord, ContainerStatus, EngineCommandResult
from deck.components.lifecycle.manager import ContainerLifecycleEngine
from deck.components.ports.allocator import PortAllocator
from deck.components.ports.models import PortCheckResult, Protocol
from deck.components.safety.permissions import PermissionGuard
from deck.components.workflows.layout import ProjectLayout
from deck.components.workflows.metadata import MetadataStore
from deck.components.workflows.orchestrator import ThreeLayerWorkflow
from deck.constants import DEFAULT_PRODUCTION_PATTERNS
from deck.core.errors import EngineUnavailableError, ErrorKind
from deck.core.registry import registry
from deck.utils.env_files import port_variables, read_env

FIXED_NOW = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


class FakeEngine(ContainerEngine):
    """In-memory container engine recording every adapter call."""

    name = "fake"
    binary = "fake"

    def __init__(self):
        super().__init__(executor=MagicMock())
        self.containers: Dict[str, ContainerRecord] = {}
        self.calls: List[tuple] = []
        self.fail_build = False
        self.unavailable = False

    def _check(self):
        if self.unavailable:
            raise EngineUnavailableError("engine is down")

    def add(self, name: str, running: bool = False, ports: Optional[List[int]] = None, created=None):
        self.containers[name] = ContainerRecord(
            id=f"id-{name}",
            name=name,
            image=f"{name}:latest",
            status=ContainerStatus.RUNNING if running else ContainerStatus.STOPPED,
            state="running" if running else "exited",
            ports=ports or [],
            created=created,
        )

    def _missing(self, name: str, operation: str) -> EngineCommandResult:
        return EngineCommandResult.fail(
            ErrorKind.OPERATION_FAILED, f"no such container: {name}", resource=name, operation=operation, exit_code=1
        )

    def _set_status(self, name: str, running: bool) -> None:
        record = self.containers[name]
        self.containers[name] = record.model_copy(update={
            "status": ContainerStatus.RUNNING if running else ContainerStatus.STOPPED,
            "state": "running" if running else "exited",
        })

    async def ping(self, timeout: float = 10.0) -> bool:
        return not self.unavailable

    async def get_info(self, name):
        self._check()
        self.calls.append(("inspect", name))
        return self.containers.get(name)

    async def list_all(self):
        self._check()
        return list(self.containers.values())

    async def list_running(self):
        self._check()
        return [c for c in self.containers.values() if c.status == ContainerStatus.RUNNING]

    async def start(self, name):
        self._check()
        self.calls.append(("start", name))
        if name not in self.containers:
            return self._missing(name, "start")
        self._set_status(name, True)
        return EngineCommandResult.ok()

    async def stop(self, name, force=False):
        self._check()
        self.calls.append(("stop", name, force))
        if name not in self.containers:
            return self._missing(name, "stop")
        self._set_status(name, False)
        return EngineCommandResult.ok()

    async def restart(self, name):
        self._check()
        self.calls.append(("restart", name))
        if name not in self.containers:
            return self._missing(name, "restart")
        self._set_status(name, True)
        return EngineCommandResult.ok()

    async def logs(self, name, tail=100):
        self._check()
        self.calls.append(("logs", name, tail))
        return EngineCommandResult.ok(stdout=f"log line from {name}\n")

    async def exec(self, name, command, workdir=None):
        self._check()
        self.calls.append(("exec", name, tuple(command)))
        return EngineCommandResult.ok(stdout="ok\n")

    async def remove(self, name, force=False):
        self._check()
        self.calls.append(("remove", name))
        self.containers.pop(name, None)
        return EngineCommandResult.ok()

    async def build(self, workdir, project_name):
        self._check()
        self.calls.append(("build", project_name))
        if self.fail_build:
            return EngineCommandResult.fail(
                ErrorKind.OPERATION_FAILED, "build failed", resource=project_name, operation="build", exit_code=1
            )
        return EngineCommandResult.ok()

    async def create(self, workdir, project_name):
        self._check()
        self.calls.append(("create", project_name))
        env = read_env(Path(workdir) / ".env")
        name = env.get("CONTAINER_NAME") or project_name
        self.add(name, ports=sorted(port_variables(env).values()))
        return EngineCommandResult.ok()

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls if c[0] != "inspect"]


class FakePortAllocator(PortAllocator):
    """Port allocator whose occupied ports are a fixed set."""

    def __init__(self, busy=(), **kwargs):
        super().__init__(**kwargs)
        self.busy = set(busy)

    async def check_port(self, port, protocol=Protocol.TCP, include_process=True):
        return PortCheckResult(
            port=port,
            protocol=protocol,
            is_available=1 <= port <= 65535 and port not in self.busy,
        )


def write_artifact(directory: Path, env: Optional[Dict[str, str]] = None) -> Path:
    """Create a directory holding the three required configuration files."""
    directory.mkdir(parents=True, exist_ok=True)
    env = env if env is not None else {"DEV_PORT": "5000"}
    (directory / ".env").write_text("".join(f"{k}={v}\n" for k, v in env.items()), encoding="utf-8")
    (directory / "compose.yaml").write_text(
        "services:\n  app:\n    build: .\n    container_name: ${CONTAINER_NAME}\n", encoding="utf-8"
    )
    (directory / "Dockerfile").write_text("FROM alpine:3.19\n", encoding="utf-8")
    return directory


@pytest.fixture(autouse=True)
def clean_registry():
    """Keep registry state from leaking between tests."""
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def project(tmp_path):
    """An empty project layout with its layer directories created."""
    layout = ProjectLayout(tmp_path)
    layout.ensure()
    return layout


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def fake_ports():
    return FakePortAllocator()


@pytest.fixture
def lifecycle(fake_engine, fake_ports):
    return ContainerLifecycleEngine(fake_engine, port_allocator=fake_ports)


@pytest.fixture
def metadata_store():
    return MetadataStore(DEFAULT_PRODUCTION_PATTERNS)


@pytest.fixture
def workflow(project, lifecycle, fake_ports, metadata_store):
    return ThreeLayerWorkflow(
        project,
        lifecycle,
        port_allocator=fake_ports,
        permission_guard=PermissionGuard(),
        metadata_store=metadata_store,
        clock=lambda: FIXED_NOW,
    )
