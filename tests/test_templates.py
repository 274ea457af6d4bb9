# tests/test_templates.py
"""
Tests for template synchronisation and offline fallback.
"""
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from deck.components.workflows.templates import SYNC_MARKER, TemplateManager
from deck.config import TemplatesConfig
from deck.core.environments import Layer
from deck.core.errors import EngineUnavailableError, ErrorKind
from tests.conftest import write_artifact


def fake_clone(*names, code=0, with_templates_dir=True):
    """An executor whose git clone writes the given templates into the checkout."""
    async def _execute(args, cwd=None, timeout=None, env=None):
        if code != 0:
            return "", "fatal: repository not found", code
        checkout = Path(args[-1])
        checkout.mkdir(parents=True)
        if with_templates_dir:
            for name in names:
                template = write_artifact(checkout / "templates" / name)
                (template / "README.md").write_text(f"# {name} starter\n", encoding="utf-8")
        return "", "", 0

    executor = MagicMock()
    executor.execute_command = AsyncMock(side_effect=_execute)
    return executor


def manager_for(project, executor, **config):
    return TemplateManager(project, TemplatesConfig(repository="/srv/deck-templates", **config), executor)


@pytest.mark.asyncio
async def test_sync_replaces_templates(project):
    write_artifact(project.path_for(Layer.TEMPLATE, "legacy"))
    executor = fake_clone("dotnet", "python")

    result = await manager_for(project, executor).sync_templates()

    assert result.success
    assert result.synced == ["dotnet", "python"]
    assert result.removed == ["legacy"]
    assert project.list_names(Layer.TEMPLATE) == ["dotnet", "python"]
    assert (project.templates_dir / SYNC_MARKER).is_file()
    args = executor.execute_command.call_args.args[0]
    assert args[:5] == ["git", "clone", "--depth", "1", "--branch"]
    assert "/srv/deck-templates" in args


@pytest.mark.asyncio
async def test_recent_sync_is_skipped_unless_forced(project):
    executor = fake_clone("dotnet")
    manager = manager_for(project, executor)
    await manager.sync_templates()

    skipped = await manager.sync_templates()
    assert skipped.skipped
    assert skipped.synced == ["dotnet"]
    assert executor.execute_command.await_count == 1

    forced = await manager.sync_templates(force=True)
    assert not forced.skipped
    assert executor.execute_command.await_count == 2


@pytest.mark.asyncio
async def test_clone_failure(project):
    result = await manager_for(project, fake_clone(code=128)).sync_templates()
    assert result.error_kind == ErrorKind.NETWORK_UNREACHABLE
    assert "repository not found" in result.message


@pytest.mark.asyncio
async def test_missing_git(project):
    executor = MagicMock()
    executor.execute_command = AsyncMock(side_effect=EngineUnavailableError("git not found"))
    result = await manager_for(project, executor).sync_templates()
    assert result.error_kind == ErrorKind.NETWORK_UNREACHABLE


@pytest.mark.asyncio
async def test_repository_without_templates_directory(project):
    result = await manager_for(project, fake_clone(with_templates_dir=False)).sync_templates()
    assert result.error_kind == ErrorKind.CONFIGURATION_INVALID


@pytest.mark.asyncio
async def test_unreachable_http_repository(project):
    executor = fake_clone("dotnet")
    manager = TemplateManager(project, TemplatesConfig(repository="https://example.invalid/templates.git"), executor)
    with patch(
        "deck.components.workflows.templates.aiohttp.ClientSession",
        side_effect=aiohttp.ClientConnectionError("down"),
    ):
        result = await manager.sync_templates()

    assert result.error_kind == ErrorKind.NETWORK_UNREACHABLE
    executor.execute_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_ensure_templates_works_offline_with_cache(project):
    write_artifact(project.path_for(Layer.TEMPLATE, "dotnet"))

    result = await manager_for(project, fake_clone(code=128)).ensure_templates()

    assert result.success
    assert result.offline
    assert result.synced == ["dotnet"]
    assert result.warnings and "offline" in result.warnings[0]


@pytest.mark.asyncio
async def test_ensure_templates_fails_without_cache(project):
    result = await manager_for(project, fake_clone(code=128)).ensure_templates()
    assert result.error_kind == ErrorKind.NETWORK_UNREACHABLE


@pytest.mark.asyncio
async def test_ensure_templates_without_sync(project):
    executor = fake_clone("dotnet")
    manager = manager_for(project, executor)

    assert (await manager.ensure_templates(sync=False)).error_kind == ErrorKind.RESOURCE_NOT_FOUND

    write_artifact(project.path_for(Layer.TEMPLATE, "python"))
    result = await manager.ensure_templates(sync=False)
    assert result.success and result.synced == ["python"]
    executor.execute_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_auto_update_disabled(project):
    executor = fake_clone("dotnet")
    write_artifact(project.path_for(Layer.TEMPLATE, "python"))
    result = await manager_for(project, executor, auto_update=False).ensure_templates()
    assert result.synced == ["python"]
    executor.execute_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_list_templates(project):
    await manager_for(project, fake_clone("dotnet")).sync_templates()

    [info] = manager_for(project, fake_clone()).list_templates()

    assert info.name == "dotnet"
    assert info.description == "dotnet starter"
    assert info.files == [".env", "Dockerfile", "README.md", "compose.yaml"]
