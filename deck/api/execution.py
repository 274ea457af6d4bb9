# deck/api/execution.py
"""
Public API for the execution components.
"""
from deck.core.registry import registry


def get_execution_engine():
    """Get the shared execution engine instance."""
    from deck.components.execution.engine import execution_engine
    engine = registry.get("execution_engine")
    if engine is None:
        engine = registry.register("execution_engine", execution_engine)
    return engine
