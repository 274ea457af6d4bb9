# tests/test_environments.py
"""
Tests for environment naming, port offsets and production detection.
"""
from datetime import datetime

import pytest

from deck.constants import DEFAULT_PRODUCTION_PATTERNS
from deck.core.environments import (
    EnvironmentType,
    compose_container_name,
    environment_port,
    generate_image_name,
    image_name_prefix,
    is_production_name,
    is_protected,
)


@pytest.mark.parametrize("environment", list(EnvironmentType))
def test_compose_container_name_is_idempotent(environment):
    once = compose_container_name("api", environment)
    assert compose_container_name(once, environment) == once
    assert once == f"api-{environment.suffix}"


def test_production_suffix_appears_once():
    name = compose_container_name(compose_container_name("dotnet-20250115-1030", EnvironmentType.PRODUCTION),
                                  EnvironmentType.PRODUCTION)
    assert name == "dotnet-20250115-1030-prod"
    assert name.count("-prod") == 1


def test_port_offsets():
    assert environment_port(5000, EnvironmentType.DEVELOPMENT) == 5000
    assert environment_port(5000, EnvironmentType.TEST) == 6000
    assert environment_port(5000, EnvironmentType.PRODUCTION) == 7000


@pytest.mark.parametrize("text,expected", [
    ("development", EnvironmentType.DEVELOPMENT),
    ("dev", EnvironmentType.DEVELOPMENT),
    ("Test", EnvironmentType.TEST),
    ("prod", EnvironmentType.PRODUCTION),
    (" Production ", EnvironmentType.PRODUCTION),
])
def test_parse_environment(text, expected):
    assert EnvironmentType.parse(text) is expected


def test_parse_unknown_environment():
    with pytest.raises(ValueError):
        EnvironmentType.parse("staging")


def test_display_value():
    assert EnvironmentType.PRODUCTION.display_value == "Production"
    assert EnvironmentType.PRODUCTION.is_production
    assert not EnvironmentType.TEST.is_production


def test_generate_image_name_and_collisions():
    now = datetime(2025, 1, 15, 10, 30)
    assert generate_image_name("web", now) == "web-20250115-1030"

    taken = {"web-20250115-1030", "web-20250115-1030-2"}
    assert generate_image_name("web", now, exists=taken.__contains__) == "web-20250115-1030-3"


def test_image_name_prefix():
    assert image_name_prefix("my-app-20250115-1030") == "my-app"
    assert image_name_prefix("my-app-20250115-1030-2") == "my-app"
    assert image_name_prefix("not-an-image") is None


def test_production_name_patterns():
    assert is_production_name("shop-prod", DEFAULT_PRODUCTION_PATTERNS)
    assert is_production_name("PROD-shop", DEFAULT_PRODUCTION_PATTERNS)
    assert is_production_name("shop-production-db", DEFAULT_PRODUCTION_PATTERNS)
    assert not is_production_name("shop-dev", DEFAULT_PRODUCTION_PATTERNS)
    assert not is_production_name("product-api-dev", DEFAULT_PRODUCTION_PATTERNS)


def test_production_patterns_are_configurable():
    assert is_production_name("shop-live", [r"-live$"])
    assert not is_production_name("shop-prod", [r"-live$"])


def test_broken_pattern_falls_back_to_substring():
    assert is_production_name("my[live", ["[live"])


def test_is_protected():
    assert is_protected(EnvironmentType.PRODUCTION, "x-dev", DEFAULT_PRODUCTION_PATTERNS)
    assert is_protected(EnvironmentType.DEVELOPMENT, "x-prod", DEFAULT_PRODUCTION_PATTERNS)
    assert not is_protected(EnvironmentType.DEVELOPMENT, "x-dev", DEFAULT_PRODUCTION_PATTERNS)
    assert not is_protected(None, None, DEFAULT_PRODUCTION_PATTERNS)
