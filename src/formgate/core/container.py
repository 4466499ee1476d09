"""Small service container wiring one settings snapshot to its collaborators."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")

Factory = Callable[["ServiceContainer"], Any]


class ServiceContainer:
    """Lazy singleton registry; a container lives as long as its settings."""

    def __init__(self, settings: Any) -> None:
        self.settings = settings
        self._factories: dict[str, Factory] = {}
        self._instances: dict[str, Any] = {}

    def register(self, key: str, factory: Callable[[ServiceContainer], T]) -> None:
        """Register a factory under ``key``, dropping any cached instance."""
        self._factories[key] = factory
        self._instances.pop(key, None)

    def override(self, key: str, instance: Any) -> None:
        """Pin a ready-made instance, typically a test double."""
        self._instances[key] = instance

    def resolve(self, key: str) -> Any:
        """Resolve a dependency by key, invoking its factory once."""
        if key in self._instances:
            return self._instances[key]
        if key not in self._factories:
            msg = f"Service '{key}' is not registered"
            raise KeyError(msg)
        instance = self._factories[key](self)
        self._instances[key] = instance
        return instance

    def clear(self) -> None:
        """Forget cached instances so the next resolve rebuilds them."""
        self._instances.clear()


__all__ = ["ServiceContainer"]
