# deck/api/ports.py
"""
Public API for port allocation.
"""
from deck.config import config_manager
from deck.core.registry import registry


def get_port_allocator():
    """Get the port allocator configured from the ports settings."""
    from deck.components.ports.allocator import PortAllocator
    ports = config_manager.config.ports
    return registry.get_or_create(
        "port_allocator",
        PortAllocator,
        probe_timeout=ports.probe_timeout,
        allow_privileged=ports.allow_privileged,
        range_start=ports.range_start,
        range_end=ports.range_end,
        search_window=ports.search_window,
    )
