"""Process-wide keyed registries resolving connectors and components by name."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Generic, TypeVar

from entity_storage.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Factory(Generic[T]):
    """Named generators with lazily constructed, cached instances.

    A generator is only called on the first ``get`` for its name; every later
    ``get`` returns the same instance until the name is unregistered or the
    factory is reset.
    """

    def __init__(self, type_name: str) -> None:
        self._type_name = type_name
        self._generators: dict[str, Callable[[], T]] = {}
        self._instances: dict[str, T] = {}
        self._lock = threading.RLock()

    @property
    def type_name(self) -> str:
        return self._type_name

    def register(self, name: str, generator: Callable[[], T]) -> None:
        """Register a generator. Re-registering a name drops any cached instance."""
        if not name:
            raise ConfigurationError(f"{self._type_name} factory names must not be empty")
        with self._lock:
            self._generators[name] = generator
            self._instances.pop(name, None)
        logger.debug("registered %s '%s'", self._type_name, name)

    def get(self, name: str) -> T:
        """Resolve an instance, constructing it on first use."""
        with self._lock:
            instance = self._instances.get(name)
            if instance is not None:
                return instance
            generator = self._generators.get(name)
            if generator is None:
                available = ", ".join(sorted(self._generators)) or "none"
                raise ConfigurationError(
                    f"No {self._type_name} registered as '{name}'. Registered: {available}"
                )
            instance = generator()
            self._instances[name] = instance
            return instance

    def get_if_exists(self, name: str) -> T | None:
        with self._lock:
            if name not in self._generators:
                return None
            return self.get(name)

    def unregister(self, name: str) -> None:
        with self._lock:
            self._generators.pop(name, None)
            self._instances.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._generators)

    def reset(self) -> None:
        """Forget every generator and instance."""
        with self._lock:
            self._generators.clear()
            self._instances.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._generators


EntityStorageConnectorFactory: Factory[Any] = Factory("entity-storage")
ComponentFactory: Factory[Any] = Factory("component")
