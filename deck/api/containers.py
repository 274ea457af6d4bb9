# deck/api/containers.py
"""
Public API for the container engine and lifecycle components.

Engine detection runs subprocesses, so these getters are coroutines. A
failed detection is registered as ``None``: the lifecycle engine then
reports ``engine_unavailable`` for every operation instead of probing again.
"""
from deck.config import config_manager
from deck.core.registry import registry


async def get_container_engine():
    """Detect (once) and return the container engine, or None."""
    if registry.has("container_engine"):
        return registry.get("container_engine")

    from deck.api.execution import get_execution_engine
    from deck.components.engine.detection import detect_engine

    settings = config_manager.config.engine
    engine = await detect_engine(
        preferred=settings.preferred,
        executor=get_execution_engine(),
        probe_timeout=settings.probe_timeout,
        retry_delay=settings.probe_retry_delay,
        command_timeout=settings.command_timeout,
        build_timeout=settings.build_timeout,
    )
    return registry.register("container_engine", engine)


async def get_lifecycle_engine():
    """Get the container lifecycle engine bound to the detected engine."""
    from deck.api.ports import get_port_allocator
    from deck.components.lifecycle.manager import ContainerLifecycleEngine

    lifecycle = registry.get("lifecycle_engine")
    if lifecycle is not None:
        return lifecycle
    engine = await get_container_engine()
    return registry.get_or_create(
        "lifecycle_engine",
        ContainerLifecycleEngine,
        engine,
        port_allocator=get_port_allocator(),
        production_patterns=config_manager.config.protection.production_patterns,
    )
