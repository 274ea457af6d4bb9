# deck/core/environments.py
"""
Layers, deployment environments and the naming rules derived from them.
"""
import re
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional

# <prefix>-YYYYMMDD-HHMM with an optional -N collision sequence
IMAGE_NAME_PATTERN = re.compile(
    r"^(?P<prefix>.+?)-(?P<date>\d{8})-(?P<time>\d{4})(?:-(?P<seq>\d+))?$"
)


class Layer(str, Enum):
    TEMPLATE = "template"
    CUSTOM = "custom"
    IMAGE = "image"


class EnvironmentType(str, Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]

    @property
    def port_offset(self) -> int:
        return _PORT_OFFSETS[self]

    @property
    def display_value(self) -> str:
        return self.value.capitalize()

    @property
    def is_production(self) -> bool:
        return self is EnvironmentType.PRODUCTION

    @classmethod
    def parse(cls, value: str) -> "EnvironmentType":
        """Accept full names, suffixes and display values (``prod``, ``Production``)."""
        text = value.strip().lower()
        for env in cls:
            if text in (env.value, env.suffix):
                return env
        raise ValueError(f"Unknown environment: {value}")


_SUFFIXES = {
    EnvironmentType.DEVELOPMENT: "dev",
    EnvironmentType.TEST: "test",
    EnvironmentType.PRODUCTION: "prod",
}

_PORT_OFFSETS = {
    EnvironmentType.DEVELOPMENT: 0,
    EnvironmentType.TEST: 1000,
    EnvironmentType.PRODUCTION: 2000,
}


def compose_container_name(base: str, environment: EnvironmentType) -> str:
    """Append the environment suffix unless ``base`` already ends with it."""
    suffix = f"-{environment.suffix}"
    if base.endswith(suffix):
        return base
    return f"{base}{suffix}"


def environment_port(base_port: int, environment: EnvironmentType) -> int:
    return base_port + environment.port_offset


def generate_image_name(
    config_name: str,
    now: Optional[datetime] = None,
    exists: Optional[Callable[[str], bool]] = None,
) -> str:
    """
    Build ``<config>-YYYYMMDD-HHMM``, adding ``-N`` while ``exists`` says taken.

    Args:
        config_name: Custom configuration name used as the prefix
        now: Timestamp to use; the current local time by default
        exists: Predicate telling whether a candidate name is already used
    """
    now = now or datetime.now()
    name = f"{config_name}-{now:%Y%m%d-%H%M}"
    if exists is None or not exists(name):
        return name
    sequence = 2
    while exists(f"{name}-{sequence}"):
        sequence += 1
    return f"{name}-{sequence}"


def image_name_prefix(image_name: str) -> Optional[str]:
    """Return the configuration prefix of an image name, or None if not standard."""
    match = IMAGE_NAME_PATTERN.match(image_name)
    return match.group("prefix") if match else None


def is_production_name(name: str, patterns: Iterable[str]) -> bool:
    """True if ``name`` matches any production pattern (case-insensitive)."""
    for pattern in patterns:
        try:
            if re.search(pattern, name, re.IGNORECASE):
                return True
        except re.error:
            # Treat a broken pattern as a plain substring
            if pattern.lower() in name.lower():
                return True
    return False


def is_protected(
    environment: Optional[EnvironmentType],
    container_name: Optional[str],
    patterns: Iterable[str],
) -> bool:
    """Protection flag: production environment or a production-looking name."""
    if environment is not None and environment.is_production:
        return True
    return bool(container_name) and is_production_name(container_name, patterns)
