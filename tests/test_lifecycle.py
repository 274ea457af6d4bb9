# tests/test_lifecycle.py
"""
Tests for the container lifecycle state machine.
"""
from unittest.mock import AsyncMock

import pytest

from deck.components.engine.docker import DockerEngine
from deck.components.lifecycle.manager import ContainerLifecycleEngine, LifecycleState, StartMode
from deck.components.ports.models import ResolutionAction
from deck.core.environments import EnvironmentType
from deck.core.errors import ErrorKind, OperationResult
from deck.utils.env_files import read_env
from tests.conftest import write_artifact

NAME = "web-20250115-1030-dev"


@pytest.fixture
def workdir(tmp_path):
    return write_artifact(tmp_path / "web-20250115-1030", {"DEV_PORT": "5000", "CONTAINER_NAME": NAME})


@pytest.mark.asyncio
async def test_start_from_nothing_builds_once_then_creates_and_starts(lifecycle, fake_engine, workdir):
    async def build():
        return await fake_engine.build(workdir, NAME)

    result = await lifecycle.smart_start(NAME, workdir, image_built=False, build=build)

    assert result.success
    assert result.prior_state == LifecycleState.NOTHING_EXISTS
    assert result.final_state == LifecycleState.RUNNING
    assert result.mode == StartMode.BUILT_AND_STARTED
    assert fake_engine.call_names() == ["build", "create", "start"]
    assert result.elapsed_seconds >= 0


@pytest.mark.asyncio
async def test_start_image_only_creates_without_build(lifecycle, fake_engine, workdir):
    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert result.mode == StartMode.CREATED_AND_STARTED
    assert result.prior_state == LifecycleState.IMAGE_ONLY_NO_CONTAINER
    assert fake_engine.call_names() == ["create", "start"]


@pytest.mark.asyncio
async def test_start_already_running(lifecycle, fake_engine, workdir):
    fake_engine.add(NAME, running=True)

    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert result.success
    assert result.mode == StartMode.ALREADY_RUNNING
    assert "exec -it" in result.hint
    assert fake_engine.call_names() == []


@pytest.mark.asyncio
async def test_start_stopped_container(lifecycle, fake_engine, workdir):
    fake_engine.add(NAME, ports=[5000])

    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert result.success
    assert result.mode == StartMode.STARTED_EXISTING
    assert fake_engine.call_names() == ["start"]


@pytest.mark.asyncio
async def test_start_stopped_container_with_busy_port(lifecycle, fake_engine, fake_ports, workdir):
    fake_engine.add(NAME, ports=[5000])
    fake_ports.busy = {5000}

    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert not result.success
    assert result.error_kind == ErrorKind.PORT_CONFLICT
    assert [c.port for c in result.conflicts] == [5000]
    assert result.suggestions[5000][0].action == ResolutionAction.USE_ALTERNATIVE_PORT
    assert result.suggestions[5000][0].alternative_port == 5001
    assert fake_engine.call_names() == []


@pytest.mark.asyncio
async def test_create_reassigns_busy_runtime_port(lifecycle, fake_engine, fake_ports, workdir):
    fake_ports.busy = {5000, 5001}

    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert result.success
    assert result.reassigned_ports == {"DEV_PORT": 5002}
    assert read_env(workdir / ".env")["DEV_PORT"] == "5002"
    assert result.warnings


@pytest.mark.asyncio
async def test_create_fails_when_no_port_is_free(fake_engine, workdir):
    from tests.conftest import FakePortAllocator
    ports = FakePortAllocator(busy=set(range(5000, 5011)), search_window=10)
    lifecycle = ContainerLifecycleEngine(fake_engine, port_allocator=ports)

    result = await lifecycle.smart_start(NAME, workdir, image_built=True)

    assert result.error_kind == ErrorKind.PORT_CONFLICT
    assert "create" not in fake_engine.call_names()


@pytest.mark.asyncio
async def test_nothing_exists_without_build(lifecycle, workdir):
    result = await lifecycle.smart_start(NAME, workdir, image_built=False)
    assert result.error_kind == ErrorKind.CONFIGURATION_INVALID


@pytest.mark.asyncio
async def test_failed_build_stops_the_start(lifecycle, fake_engine, workdir):
    fake_engine.fail_build = True

    async def build():
        outcome = await fake_engine.build(workdir, NAME)
        return OperationResult.from_error(outcome.error) if not outcome.success else outcome

    result = await lifecycle.smart_start(NAME, workdir, image_built=False, build=build)

    assert not result.success
    assert result.prior_state == LifecycleState.NOTHING_EXISTS
    assert fake_engine.call_names() == ["build"]


@pytest.mark.asyncio
async def test_engine_unavailable(lifecycle, fake_engine, workdir):
    fake_engine.unavailable = True
    result = await lifecycle.smart_start(NAME, workdir, image_built=True)
    assert result.error_kind == ErrorKind.ENGINE_UNAVAILABLE
    assert result.error.resource == NAME


@pytest.mark.asyncio
async def test_no_engine_detected(fake_ports, workdir):
    lifecycle = ContainerLifecycleEngine(None, port_allocator=fake_ports)
    assert (await lifecycle.smart_start(NAME, workdir, image_built=True)).error_kind == ErrorKind.ENGINE_UNAVAILABLE
    assert (await lifecycle.stop(NAME)).error_kind == ErrorKind.ENGINE_UNAVAILABLE


@pytest.mark.asyncio
async def test_stop(lifecycle, fake_engine):
    fake_engine.add(NAME, running=True)

    result = await lifecycle.stop(NAME, force=True)

    assert result.success
    assert result.final_state == LifecycleState.STOPPED_EXISTS
    assert ("stop", NAME, True) in fake_engine.calls


@pytest.mark.asyncio
async def test_stop_already_stopped_is_a_no_op(lifecycle, fake_engine):
    fake_engine.add(NAME)
    result = await lifecycle.stop(NAME)
    assert result.success
    assert fake_engine.call_names() == []


@pytest.mark.asyncio
async def test_stop_and_restart_missing(lifecycle):
    assert (await lifecycle.stop("ghost")).error_kind == ErrorKind.RESOURCE_NOT_FOUND
    assert (await lifecycle.restart("ghost")).error_kind == ErrorKind.RESOURCE_NOT_FOUND


@pytest.mark.asyncio
async def test_restart(lifecycle, fake_engine):
    fake_engine.add(NAME)
    result = await lifecycle.restart(NAME)
    assert result.success
    assert result.prior_state == LifecycleState.STOPPED_EXISTS
    assert fake_engine.containers[NAME].state == "running"


@pytest.mark.asyncio
async def test_remove_production_requires_permission(lifecycle, fake_engine):
    fake_engine.add("shop-20250115-1030-prod")

    refused = await lifecycle.remove("shop-20250115-1030-prod")
    assert refused.error_kind == ErrorKind.PRODUCTION_PROTECTED
    assert "shop-20250115-1030-prod" in fake_engine.containers

    allowed = await lifecycle.remove("shop-20250115-1030-prod", allow_protected=True)
    assert allowed.success
    assert "shop-20250115-1030-prod" not in fake_engine.containers


@pytest.mark.asyncio
async def test_remove_missing_container_is_ok(lifecycle):
    assert (await lifecycle.remove("ghost-dev")).success


@pytest.mark.asyncio
async def test_logs_and_exec(lifecycle, fake_engine):
    assert (await lifecycle.logs("ghost")).error_kind == ErrorKind.RESOURCE_NOT_FOUND

    fake_engine.add(NAME)
    logs = await lifecycle.logs(NAME, tail=5)
    assert logs.output == f"log line from {NAME}\n"

    not_running = await lifecycle.exec_command(NAME, ["ls"])
    assert not not_running.success

    fake_engine.add(NAME, running=True)
    assert (await lifecycle.exec_command(NAME, ["ls"])).output == "ok\n"


@pytest.mark.asyncio
async def test_list_project_containers(lifecycle, fake_engine):
    fake_engine.add(NAME, running=True)
    fake_engine.add("other-dev")
    fake_engine.add("unrelated")

    everything = await lifecycle.list_project_containers([NAME, "other-dev"])
    running = await lifecycle.list_project_containers([NAME, "other-dev"], include_stopped=False)

    assert sorted(c.name for c in everything.containers) == [NAME, "other-dev"]
    assert [c.name for c in running.containers] == [NAME]


@pytest.mark.asyncio
async def test_daemon_down_is_reported_as_engine_unavailable(fake_ports, workdir):
    executor = AsyncMock()
    executor.execute_command.return_value = (
        "",
        "Cannot connect to the Docker daemon at unix:///var/run/docker.sock. Is the docker daemon running?",
        1,
    )
    lifecycle = ContainerLifecycleEngine(DockerEngine(executor=executor), port_allocator=fake_ports)

    stopped = await lifecycle.stop(NAME)
    started = await lifecycle.smart_start(NAME, workdir, image_built=True)
    listed = await lifecycle.list_project_containers([NAME])

    assert stopped.error_kind == ErrorKind.ENGINE_UNAVAILABLE
    assert started.error_kind == ErrorKind.ENGINE_UNAVAILABLE
    assert listed.error_kind == ErrorKind.ENGINE_UNAVAILABLE
    # never fell through to create
    assert all(call.args[0][1] != "compose" for call in executor.execute_command.await_args_list)


@pytest.mark.asyncio
async def test_remove_production_environment_with_custom_patterns(fake_engine, fake_ports):
    lifecycle = ContainerLifecycleEngine(fake_engine, port_allocator=fake_ports, production_patterns=[r"-live$"])
    fake_engine.add("shop-20250115-1030-prod")

    refused = await lifecycle.remove("shop-20250115-1030-prod", environment=EnvironmentType.PRODUCTION)
    assert refused.error_kind == ErrorKind.PRODUCTION_PROTECTED
    assert "shop-20250115-1030-prod" in fake_engine.containers

    assert (await lifecycle.remove("shop-20250115-1030-prod")).success
