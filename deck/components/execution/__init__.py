# deck/components/execution/__init__.py
"""Subprocess execution for engine and git commands."""
from deck.components.execution.engine import ExecutionEngine, execution_engine

__all__ = ["ExecutionEngine", "execution_engine"]
