# deck/components/engine/detection.py
"""
Selects the container engine to use for this invocation.
"""
import asyncio
import shutil
from typing import Dict, Optional, Type

from deck.components.engine.base import ContainerEngine
from deck.components.engine.docker import DockerEngine
from deck.components.engine.podman import PodmanEngine
from deck.components.execution.engine import ExecutionEngine
from deck.core.errors import EngineUnavailableError
from deck.utils.logging import get_logger

logger = get_logger(__name__)

# Podman is preferred when both are installed
ENGINE_VARIANTS: Dict[str, Type[ContainerEngine]] = {
    "podman": PodmanEngine,
    "docker": DockerEngine,
}


async def _probe(engine: ContainerEngine, timeout: float, retry_delay: float) -> bool:
    """Connectivity probe with exactly one retry."""
    for attempt in (1, 2):
        try:
            if await engine.ping(timeout=timeout):
                return True
        except EngineUnavailableError as e:
            logger.debug(f"{engine.name} probe attempt {attempt} failed: {e}")
        if attempt == 1:
            await asyncio.sleep(retry_delay)
    return False


async def detect_engine(
    preferred: Optional[str] = None,
    executor: Optional[ExecutionEngine] = None,
    probe_timeout: float = 10.0,
    retry_delay: float = 1.0,
    command_timeout: float = 120.0,
    build_timeout: float = 1800.0,
) -> Optional[ContainerEngine]:
    """
    Find the first installed engine whose connectivity probe succeeds.

    Args:
        preferred: Restrict detection to 'docker' or 'podman'
        executor: Command runner handed to the engine
        probe_timeout: Timeout for each probe attempt
        retry_delay: Delay before the single retry

    Returns:
        A ready engine adapter, or None if none answers
    """
    if preferred:
        if preferred not in ENGINE_VARIANTS:
            logger.error(f"Unknown container engine: {preferred}")
            return None
        candidates = [preferred]
    else:
        candidates = list(ENGINE_VARIANTS)

    for name in candidates:
        if shutil.which(name) is None:
            logger.debug(f"{name} is not installed")
            continue
        engine = ENGINE_VARIANTS[name](
            executor=executor,
            command_timeout=command_timeout,
            build_timeout=build_timeout,
        )
        if await _probe(engine, probe_timeout, retry_delay):
            logger.info(f"Using container engine: {name}")
            return engine
        logger.warning(f"{name} is installed but not responding")

    logger.warning("No available container engine detected")
    return None
