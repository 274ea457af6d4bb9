# deck/components/lifecycle/__init__.py
"""Container lifecycle state machine."""
from deck.components.lifecycle.manager import (
    ContainerLifecycleEngine,
    LifecycleResult,
    LifecycleState,
    StartMode,
)

__all__ = ["ContainerLifecycleEngine", "LifecycleResult", "LifecycleState", "StartMode"]
