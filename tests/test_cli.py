# tests/test_cli.py
"""
Tests for the command-line interface with the orchestrator patched out.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from deck.components.catalog.resources import (
    CleaningCandidate,
    CleaningItemOutcome,
    CleaningOption,
    CleaningOptionId,
    CleaningResult,
    ResourceKind,
)
from deck.components.cli import app
from deck.components.lifecycle.manager import LifecycleResult, LifecycleState, LogsResult, ShellResult, StartMode
from deck.components.safety.permissions import PermissionGuidance, PermissionViolation, ViolationType
from deck.components.workflows.layout import LayerArtifact
from deck.components.workflows.orchestrator import WorkflowResult
from deck.core.environments import EnvironmentType, Layer
from deck.core.errors import ErrorKind
from deck.orchestrator import (
    CleaningOptionsResult,
    CustomConfigInfo,
    CustomListResult,
    PermissionHelpResult,
    SelectableItem,
    SelectionResult,
    orchestrator,
)

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_init():
    with patch("deck.components.cli.main.init_application") as init:
        yield init


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "Deck version" in result.stdout


def test_start_success_shows_container_and_ports():
    started = WorkflowResult.ok(
        "dotnet-20250115-1030-prod is running",
        container_name="dotnet-20250115-1030-prod",
        environment=EnvironmentType.PRODUCTION,
        ports={"DEV_PORT": 7000},
        lifecycle=LifecycleResult.ok(
            "started",
            container_name="dotnet-20250115-1030-prod",
            mode=StartMode.BUILT_AND_STARTED,
            final_state=LifecycleState.RUNNING,
        ),
    )
    with patch.object(orchestrator, "start", AsyncMock(return_value=started)) as start:
        result = runner.invoke(app, ["start", "dotnet", "--env", "prod", "--var", "APP=orders"])

    assert result.exit_code == 0, result.stdout
    assert "dotnet-20250115-1030-prod" in result.stdout
    assert "7000" in result.stdout
    kwargs = start.await_args.kwargs
    assert kwargs["environment"] == EnvironmentType.PRODUCTION
    assert kwargs["variables"] == {"APP": "orders"}
    assert kwargs["sync"] is True


def test_start_failure_exits_nonzero():
    failed = WorkflowResult.fail(
        ErrorKind.CONFIGURATION_INVALID, "web: missing Dockerfile", resource="web", remediation="Add a Dockerfile"
    )
    with patch.object(orchestrator, "start", AsyncMock(return_value=failed)):
        result = runner.invoke(app, ["start", "--custom", "web", "--no-sync"])

    assert result.exit_code == 1
    assert "configuration_invalid" in result.stdout


def test_start_rejects_unknown_environment():
    result = runner.invoke(app, ["start", "dotnet", "--env", "staging"])
    assert result.exit_code == 2


def test_start_rejects_malformed_variable():
    result = runner.invoke(app, ["start", "dotnet", "--var", "NOVALUE"])
    assert result.exit_code == 2


def test_stop_passes_force():
    stopped = LifecycleResult.ok("Stopped web-dev", container_name="web-dev")
    with patch.object(orchestrator, "stop", AsyncMock(return_value=stopped)) as stop:
        result = runner.invoke(app, ["stop", "web-dev", "--force"])
    assert result.exit_code == 0
    stop.assert_awaited_once_with("web-dev", force=True)


def test_logs_prints_output():
    output = LogsResult.ok(container_name="web-dev", output="hello from web\n")
    with patch.object(orchestrator, "logs", AsyncMock(return_value=output)) as logs:
        result = runner.invoke(app, ["logs", "web-dev", "--tail", "20"])
    assert result.exit_code == 0
    assert "hello from web" in result.stdout
    logs.assert_awaited_once_with("web-dev", tail=20)


def test_templates_list_empty():
    with patch.object(orchestrator, "list_templates", MagicMock(return_value=[])):
        result = runner.invoke(app, ["templates", "list"])
    assert result.exit_code == 0
    assert "No templates found" in result.stdout


def test_clean_non_interactive():
    option = CleaningOption(
        id=CleaningOptionId.IMAGES_ORPHANED,
        title="Remove orphaned Images",
        description="Images whose Custom configuration no longer exists",
        candidates=[CleaningCandidate(name="api-20250110-0900", kind=ResourceKind.IMAGE)],
        requires_confirmation=False,
    )
    cleaned = CleaningResult.ok(
        "Removed 1, skipped 0, failed 0",
        option_id=option.id,
        outcomes=[CleaningItemOutcome(name="api-20250110-0900", kind=ResourceKind.IMAGE, removed=True)],
    )
    with patch.object(orchestrator, "cleaning_options", AsyncMock(return_value=CleaningOptionsResult.ok(options=[option]))) as listing, \
            patch.object(orchestrator, "clean", AsyncMock(return_value=cleaned)) as clean:
        result = runner.invoke(app, ["images", "clean", "--option", "images-orphaned", "--yes"])

    assert result.exit_code == 0, result.stdout
    assert "Removed 1" in result.stdout
    listing.assert_awaited_once_with(non_interactive=True)
    assert clean.await_args.kwargs["selected"] is None


def test_clean_selective_option_needs_a_terminal():
    with patch.object(orchestrator, "cleaning_options", AsyncMock(return_value=CleaningOptionsResult.ok(options=[]))):
        result = runner.invoke(app, ["images", "clean", "--option", "images-selective", "--yes"])
    assert result.exit_code == 1


def test_start_without_target_offers_all_layers():
    items = SelectionResult.ok(items=[
        SelectableItem(layer=Layer.IMAGE, name="web-20250115-1030", label="web-20250115-1030 (Development, 1 hour ago)"),
        SelectableItem(layer=Layer.CUSTOM, name="web", label="web from dotnet"),
        SelectableItem(layer=Layer.TEMPLATE, name="dotnet", label="dotnet"),
    ])
    started = WorkflowResult.ok("web-20250115-1100-dev is running", container_name="web-20250115-1100-dev")
    with patch.object(orchestrator, "selectable_items", AsyncMock(return_value=items)), \
            patch.object(orchestrator, "start", AsyncMock(return_value=started)) as start:
        result = runner.invoke(app, ["start"], input="2\n")

    assert result.exit_code == 0, result.stdout
    assert "Templates" in result.stdout
    kwargs = start.await_args.kwargs
    assert kwargs["custom"] == "web"
    assert kwargs["image"] is None
    assert kwargs["template"] is None


def test_start_without_target_and_nothing_to_offer():
    failed = WorkflowResult.fail(ErrorKind.CONFIGURATION_INVALID, "Nothing to start")
    with patch.object(orchestrator, "selectable_items", AsyncMock(return_value=SelectionResult.ok())), \
            patch.object(orchestrator, "start", AsyncMock(return_value=failed)):
        result = runner.invoke(app, ["start"])
    assert result.exit_code == 1
    assert "Nothing to start" in result.stdout


def test_shell_runs_one_command():
    output = LogsResult.ok(container_name="web-dev", output="total 0\n")
    with patch.object(orchestrator, "exec", AsyncMock(return_value=output)) as run:
        result = runner.invoke(app, ["shell", "web-dev", "ls"])
    assert result.exit_code == 0, result.stdout
    assert "total 0" in result.stdout
    run.assert_awaited_once_with("web-dev", ["ls"])


def test_shell_attaches_to_the_container():
    attach = ShellResult.ok(container_name="web-dev", argv=["docker", "exec", "-it", "web-dev", "/bin/bash"])
    with patch.object(orchestrator, "shell", AsyncMock(return_value=attach)), \
            patch("deck.components.cli.main.subprocess.call", return_value=0) as call:
        result = runner.invoke(app, ["shell", "web-dev"])
    assert result.exit_code == 0, result.stdout
    call.assert_called_once_with(["docker", "exec", "-it", "web-dev", "/bin/bash"])


def test_rm_passes_force_and_confirmation():
    removed = LifecycleResult.ok("Removed web-dev", container_name="web-dev")
    with patch.object(orchestrator, "rm", AsyncMock(return_value=removed)) as rm:
        result = runner.invoke(app, ["rm", "web-dev", "--force"])
    assert result.exit_code == 0, result.stdout
    assert "Removed web-dev" in result.stdout
    assert rm.await_args.kwargs["force"] is True
    assert callable(rm.await_args.kwargs["confirm_protected"])


def test_rm_protected_refusal_exits_nonzero():
    refused = LifecycleResult.fail(ErrorKind.PRODUCTION_PROTECTED, "shop-prod is protected", resource="shop-prod")
    with patch.object(orchestrator, "rm", AsyncMock(return_value=refused)):
        result = runner.invoke(app, ["rm", "shop-prod"])
    assert result.exit_code == 1
    assert "production_protected" in result.stdout


def test_custom_list(tmp_path):
    artifact = LayerArtifact(name="web", path=tmp_path, layer=Layer.CUSTOM, variables={"DEV_PORT": "5000"})
    listing = CustomListResult.ok(configs=[
        CustomConfigInfo(artifact=artifact, source="dotnet", images=["web-20250115-1030"]),
    ])
    with patch.object(orchestrator, "list_custom", AsyncMock(return_value=listing)):
        result = runner.invoke(app, ["custom", "list"])
    assert result.exit_code == 0, result.stdout
    assert "web-20250115-1030" in result.stdout
    assert "dotnet" in result.stdout


def test_custom_create_passes_name_and_variables():
    created = WorkflowResult.ok("Created editable configuration shop", custom_name="shop")
    with patch.object(orchestrator, "create_custom", AsyncMock(return_value=created)) as create:
        result = runner.invoke(app, ["custom", "create", "dotnet", "--name", "shop", "--var", "APP=shop"])
    assert result.exit_code == 0, result.stdout
    assert "deck start --custom shop" in result.stdout
    create.assert_awaited_once_with("dotnet", name="shop", sync=True, variables={"APP": "shop"})


def test_images_help_shows_guidance():
    guidance = PermissionGuidance(
        violation=PermissionViolation(type=ViolationType.DIRECTORY_RENAME, path="images/<image>"),
        explanation="Image directory names link the directory to its image and containers.",
        steps=["Keep the existing name"],
    )
    help_result = PermissionHelpResult.ok("Image permissions", guidance=[guidance])
    with patch.object(orchestrator, "permission_help", AsyncMock(return_value=help_result)) as helper:
        result = runner.invoke(app, ["images", "help"])
    assert result.exit_code == 0, result.stdout
    assert "Keep the existing name" in result.stdout
    helper.assert_awaited_once_with(None)


def test_images_set_env_rejects_empty_change():
    result = runner.invoke(app, ["images", "set-env", "web-20250115-1030"])
    assert result.exit_code == 2
