# deck/core/__init__.py
"""Core infrastructure: service registry and result types."""
from deck.core.registry import registry

__all__ = ["registry"]
