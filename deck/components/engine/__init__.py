# deck/components/engine/__init__.py
"""Container engine adapters and detection."""
from deck.components.engine.base import (
    ContainerEngine,
    ContainerRecord,
    ContainerStatus,
    EngineCommandResult,
)
from deck.components.engine.docker import DockerEngine
from deck.components.engine.podman import PodmanEngine
from deck.components.engine.detection import detect_engine

__all__ = [
    "ContainerEngine",
    "ContainerRecord",
    "ContainerStatus",
    "EngineCommandResult",
    "DockerEngine",
    "PodmanEngine",
    "detect_engine",
]
