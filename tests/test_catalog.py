# tests/test_catalog.py
"""
Tests for the unified resource catalog and protection-aware cleanup.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from deck.components.catalog.resources import (
    CleaningOptionId,
    ResourceKind,
    UnifiedResourceCatalog,
    relative_time,
)
from deck.components.workflows.metadata import BuildStatus, CustomOrigin, ImageMetadata
from deck.config import CleaningConfig
from deck.core.environments import EnvironmentType, Layer, compose_container_name
from tests.conftest import FIXED_NOW, write_artifact


def make_image(project, store, name, custom="web", environment=EnvironmentType.DEVELOPMENT, age=timedelta(hours=1)):
    image_dir = write_artifact(project.path_for(Layer.IMAGE, name))
    store.write(image_dir, ImageMetadata(
        image_name=name,
        source_custom=custom,
        created_at=FIXED_NOW - age,
        build_status=BuildStatus.STOPPED,
        container_name=compose_container_name(name, environment),
        environment=environment,
    ))
    return image_dir


@pytest.fixture
def catalog(workflow, lifecycle):
    return UnifiedResourceCatalog(workflow, lifecycle, CleaningConfig(keep_latest=1), clock=lambda: FIXED_NOW)


def options_by_id(options):
    return {option.id: option for option in options}


@pytest.fixture
def mixed_project(project, metadata_store, fake_engine):
    """A dev and a production Image from a deleted Custom, plus one live Custom."""
    write_artifact(project.path_for(Layer.CUSTOM, "web"))
    make_image(project, metadata_store, "api-20250110-0900", custom="api", age=timedelta(days=5))
    make_image(
        project, metadata_store, "api-20250111-0900", custom="api",
        environment=EnvironmentType.PRODUCTION, age=timedelta(days=4),
    )
    make_image(project, metadata_store, "web-20250115-1000")
    for name in ("api-20250110-0900-dev", "api-20250111-0900-prod", "web-20250115-1000-dev"):
        fake_engine.add(name, created=FIXED_NOW - timedelta(days=10))
    return project


@pytest.mark.asyncio
async def test_non_interactive_options_never_list_protected(catalog, mixed_project):
    options = await catalog.get_cleaning_options(non_interactive=True)

    assert {o.id for o in options} == {
        CleaningOptionId.IMAGES_KEEP_LATEST,
        CleaningOptionId.IMAGES_ORPHANED,
        CleaningOptionId.CONTAINERS_STOPPED,
    }
    for option in options:
        assert not option.requires_confirmation
        assert all(not c.protected for c in option.candidates)
        assert "api-20250111-0900" not in [c.name for c in option.candidates]
        assert "api-20250111-0900-prod" not in [c.name for c in option.candidates]

    by_id = options_by_id(options)
    assert [c.name for c in by_id[CleaningOptionId.IMAGES_ORPHANED].candidates] == ["api-20250110-0900"]
    assert sorted(c.name for c in by_id[CleaningOptionId.CONTAINERS_STOPPED].candidates) == [
        "api-20250110-0900-dev",
        "web-20250115-1000-dev",
    ]


@pytest.mark.asyncio
async def test_keep_latest_groups_by_prefix(catalog, mixed_project, metadata_store):
    make_image(mixed_project, metadata_store, "web-20250115-1020", age=timedelta(minutes=10))

    options = options_by_id(await catalog.get_cleaning_options())
    keep_latest = options[CleaningOptionId.IMAGES_KEEP_LATEST]

    assert [c.name for c in keep_latest.candidates] == ["api-20250110-0900", "web-20250115-1000"]
    assert keep_latest.requires_confirmation


@pytest.mark.asyncio
async def test_selective_cleanup_with_per_item_confirmation(catalog, mixed_project, fake_engine):
    options = options_by_id(await catalog.get_cleaning_options())
    selective = options[CleaningOptionId.IMAGES_SELECTIVE]
    assert selective.explicit
    protected = [c.name for c in selective.candidates if c.protected]
    assert protected == ["api-20250111-0900"]

    asked = []

    def approve_unprotected(candidate):
        asked.append(candidate.name)
        return not candidate.protected

    result = await catalog.execute_cleaning(selective, approve_unprotected)

    assert result.success
    assert sorted(asked) == ["api-20250110-0900", "api-20250111-0900", "web-20250115-1000"]
    assert sorted(result.removed) == ["api-20250110-0900", "web-20250115-1000"]
    assert result.skipped == ["api-20250111-0900"]
    assert mixed_project.exists(Layer.IMAGE, "api-20250111-0900")
    assert "api-20250111-0900-prod" in fake_engine.containers
    assert not mixed_project.exists(Layer.IMAGE, "web-20250115-1000")
    assert "web-20250115-1000-dev" not in fake_engine.containers


@pytest.mark.asyncio
async def test_confirmed_protected_image_is_removed(catalog, mixed_project, fake_engine):
    options = options_by_id(await catalog.get_cleaning_options())
    selective = options[CleaningOptionId.IMAGES_SELECTIVE].model_copy(update={
        "candidates": [c for c in options[CleaningOptionId.IMAGES_SELECTIVE].candidates if c.protected]
    })

    result = await catalog.execute_cleaning(selective, AsyncMock(return_value=True))

    assert result.removed == ["api-20250111-0900"]
    assert "api-20250111-0900-prod" not in fake_engine.containers


@pytest.mark.asyncio
async def test_automatic_option_skips_resources_that_became_protected(catalog, mixed_project):
    options = options_by_id(await catalog.get_cleaning_options(non_interactive=True))
    orphaned = options[CleaningOptionId.IMAGES_ORPHANED]
    tampered = orphaned.model_copy(update={
        "candidates": [orphaned.candidates[0].model_copy(update={"name": "api-20250111-0900"})]
    })

    result = await catalog.execute_cleaning(tampered)

    assert result.skipped == ["api-20250111-0900"]
    assert mixed_project.exists(Layer.IMAGE, "api-20250111-0900")


@pytest.mark.asyncio
async def test_unconfirmed_candidates_are_skipped(catalog, mixed_project):
    options = options_by_id(await catalog.get_cleaning_options())
    result = await catalog.execute_cleaning(options[CleaningOptionId.IMAGES_ORPHANED], lambda c: False)
    assert result.skipped == ["api-20250110-0900"]
    assert mixed_project.exists(Layer.IMAGE, "api-20250110-0900")


@pytest.mark.asyncio
async def test_templates_option_is_informational(catalog, mixed_project):
    options = options_by_id(await catalog.get_cleaning_options())
    result = await catalog.execute_cleaning(options[CleaningOptionId.TEMPLATES_SUGGEST])
    assert result.success
    assert result.outcomes == []


@pytest.mark.asyncio
async def test_custom_selective_keeps_images(catalog, mixed_project):
    options = options_by_id(await catalog.get_cleaning_options())
    custom = options[CleaningOptionId.CUSTOM_SELECTIVE]
    assert [(c.name, c.kind) for c in custom.candidates] == [("web", ResourceKind.CUSTOM)]

    result = await catalog.execute_cleaning(custom, lambda c: True)

    assert result.removed == ["web"]
    assert not mixed_project.exists(Layer.CUSTOM, "web")
    assert mixed_project.exists(Layer.IMAGE, "web-20250115-1000")


@pytest.mark.asyncio
async def test_unified_list_filters(catalog, mixed_project):
    listing = await catalog.get_unified_resource_list()
    assert [e.name for e in listing.images] == ["web-20250115-1000", "api-20250111-0900", "api-20250110-0900"]
    assert listing.total == 4

    production = await catalog.get_unified_resource_list(environment=EnvironmentType.PRODUCTION)
    assert [e.name for e in production.images] == ["api-20250111-0900"]
    assert production.images[0].protected

    web_only = await catalog.get_unified_resource_list(project_type="web")
    assert [e.name for e in web_only.images] == ["web-20250115-1000"]
    assert [e.name for e in web_only.custom] == ["web"]


@pytest.mark.asyncio
async def test_resource_relationships(catalog, project, metadata_store):
    write_artifact(project.path_for(Layer.TEMPLATE, "python"))
    custom_dir = write_artifact(project.path_for(Layer.CUSTOM, "web"))
    metadata_store.write_origin(custom_dir, CustomOrigin(source_template="python", created_at=FIXED_NOW))
    make_image(project, metadata_store, "web-20250115-1000")

    relationships = {r.resource_name: r for r in await catalog.get_resource_relationships()}

    assert relationships["python"].derived == ["web"]
    assert relationships["web"].source_resource == "python"
    assert relationships["web"].source_layer == Layer.TEMPLATE
    assert relationships["web"].derived == ["web-20250115-1000"]
    assert relationships["web-20250115-1000"].container_names == ["web-20250115-1000-dev"]


@pytest.mark.asyncio
async def test_validate_resource(catalog, project):
    missing = await catalog.validate_resource(Layer.CUSTOM, "ghost")
    assert missing.error_kind.value == "resource_not_found"

    write_artifact(project.path_for(Layer.CUSTOM, "web"))
    assert (await catalog.validate_resource(Layer.CUSTOM, "web")).success


def test_relative_time():
    assert relative_time(FIXED_NOW - timedelta(minutes=5), FIXED_NOW) == "5 minutes ago"
    assert relative_time(FIXED_NOW - timedelta(days=1), FIXED_NOW) == "1 day ago"
    assert relative_time(FIXED_NOW, FIXED_NOW) == "just now"
    assert relative_time(None) == "unknown"


@pytest.mark.asyncio
async def test_automatic_options_leave_running_containers_alone(catalog, mixed_project, fake_engine):
    fake_engine.add("api-20250110-0900-dev", running=True, created=FIXED_NOW - timedelta(days=10))

    options = options_by_id(await catalog.get_cleaning_options(non_interactive=True))

    for option_id in (CleaningOptionId.IMAGES_KEEP_LATEST, CleaningOptionId.IMAGES_ORPHANED):
        assert "api-20250110-0900" not in [c.name for c in options[option_id].candidates]
    result = await catalog.execute_cleaning(options[CleaningOptionId.IMAGES_ORPHANED])
    assert result.removed == []
    assert fake_engine.containers["api-20250110-0900-dev"].status.value == "running"

    selective = options_by_id(await catalog.get_cleaning_options())[CleaningOptionId.IMAGES_SELECTIVE]
    assert "api-20250110-0900" in [c.name for c in selective.candidates]


@pytest.mark.asyncio
async def test_cleaning_passes_the_recorded_environment(project, metadata_store, fake_engine, lifecycle, workflow):
    make_image(project, metadata_store, "shop-20250110-0900", custom="shop", environment=EnvironmentType.PRODUCTION)
    fake_engine.add("shop-20250110-0900-prod")
    lifecycle.remove = AsyncMock(wraps=lifecycle.remove)
    catalog = UnifiedResourceCatalog(workflow, lifecycle, CleaningConfig(keep_latest=1), clock=lambda: FIXED_NOW)

    selective = options_by_id(await catalog.get_cleaning_options())[CleaningOptionId.IMAGES_SELECTIVE]
    result = await catalog.execute_cleaning(selective, lambda candidate: True)

    assert result.removed == ["shop-20250110-0900"]
    assert lifecycle.remove.await_args.kwargs["environment"] == EnvironmentType.PRODUCTION
    assert lifecycle.remove.await_args.kwargs["allow_protected"] is True


@pytest.mark.asyncio
async def test_hand_edited_naive_timestamp_sorts_with_the_rest(catalog, mixed_project):
    edited = mixed_project.path_for(Layer.IMAGE, "web-20250115-1000") / "metadata.json"
    edited.write_text(
        edited.read_text(encoding="utf-8").replace("+00:00", "").replace("Z", ""),
        encoding="utf-8",
    )

    listing = await catalog.get_unified_resource_list()
    options = options_by_id(await catalog.get_cleaning_options())

    assert len(listing.images) == 3
    assert all(entry.created_at.tzinfo is not None for entry in listing.images)
    assert CleaningOptionId.IMAGES_KEEP_LATEST in options
