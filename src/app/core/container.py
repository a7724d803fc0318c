"""Dependency container"""
from typing import Any, Dict, Type, TypeVar

T = TypeVar('T')

class DIContainer:
    """Singleton registry keyed by interface type"""

    def __init__(self):
        self._singletons: Dict[Type, Any] = {}

    def register_singleton(self, interface: Type[T], implementation: T) -> None:
        self._singletons[interface] = implementation

    def get(self, interface: Type[T]) -> T:
        if interface in self._singletons:
            return self._singletons[interface]

        interface_name = getattr(interface, "__name__", repr(interface))
        raise ValueError(f"Service {interface_name} not registered")

    def reset(self) -> None:
        """Drop every registration (tests)"""
        self._singletons.clear()

# Global container instance
container = DIContainer()
