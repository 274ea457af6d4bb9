# deck/__init__.py
"""
Deck: three-layer (Template -> Custom -> Image) containerized development environments.
"""

__version__ = '0.1.0'

from deck.core.registry import registry


def init_application(project_root=None, debug: bool = False):
    """
    Initialize configuration, logging and the components that need no engine.

    Args:
        project_root: Directory inside the project; the current directory by default
        debug: Force debug logging regardless of the configuration
    """
    from deck.api.execution import get_execution_engine
    from deck.api.ports import get_port_allocator
    from deck.api.safety import get_permission_guard
    from deck.api.workflows import get_metadata_store, get_project_layout
    from deck.components.workflows.layout import find_project_root
    from deck.config import config_manager
    from deck.utils.logging import get_logger, setup_logging

    config = config_manager.load_config(find_project_root(project_root))
    if debug:
        config.debug = True
    setup_logging(debug=config.debug)

    registry.register("config_manager", config_manager)
    get_execution_engine()
    get_port_allocator()
    get_permission_guard()
    get_project_layout(project_root)
    get_metadata_store()

    logger = get_logger(__name__)
    logger.debug(f"Application initialization completed: {registry.get_initialization_order()}")
