# deck/core/registry.py
"""
Component registry for one Deck invocation.

The ``deck.api`` getters build each component on first use and park it
here, so the workflow, catalog and CLI share one engine, one port allocator
and one project layout. A component may be registered as ``None`` to record
that it is unavailable (no container engine found); ``has`` tells that
apart from "not built yet".
"""
import threading
from typing import Any, Dict, List, Optional, Type, TypeVar

from loguru import logger

T = TypeVar('T')


class ServiceRegistry:
    """Process-wide map of component name to instance."""

    _instance = None
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'ServiceRegistry':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = ServiceRegistry()
        return cls._instance

    def __init__(self):
        self._components: Dict[str, Any] = {}
        self._order: List[str] = []
        self._logger = logger.bind(name=__name__)

    def register(self, name: str, component: Any) -> Any:
        """
        Store ``component`` under ``name``, replacing any previous one.

        Returns:
            The component, so getters can ``return registry.register(...)``
        """
        with self._lock:
            replaced = name in self._components
            self._components[name] = component
            if name not in self._order:
                self._order.append(name)
        label = "unavailable" if component is None else type(component).__name__
        self._logger.debug(f"{'Replaced' if replaced else 'Registered'} {name} ({label})")
        return component

    def has(self, name: str) -> bool:
        return name in self._components

    def get(self, name: str) -> Optional[Any]:
        return self._components.get(name)

    def get_or_create(self, name: str, cls: Type[T], *args, **kwargs) -> T:
        """
        Return the component called ``name``, building it with
        ``cls(*args, **kwargs)`` the first time.
        """
        with self._lock:
            component = self._components.get(name)
            if component is None:
                return self.register(name, cls(*args, **kwargs))
        if not isinstance(component, cls):
            self._logger.warning(f"{name} is a {type(component).__name__}, not a {cls.__name__}")
        return component

    def clear(self) -> None:
        with self._lock:
            self._components.clear()
            self._order.clear()

    def get_initialization_order(self) -> List[str]:
        with self._lock:
            return list(self._order)


registry = ServiceRegistry.get_instance()
