"""Storage for registered services and their per-service settings."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from needle.scope import Scope

Provider = Callable[[Any, Any], Any]
Hook = Callable[[Any], Any]


@dataclass
class ServiceEntry:
    """Everything the container knows about one service."""

    key: str
    provider: Provider | None = None
    instance: Any = None
    instantiated: bool = False
    dependencies: list[str] = field(default_factory=list)
    on_start: list[Hook] = field(default_factory=list)
    on_stop: list[Hook] = field(default_factory=list)
    scope: Scope = Scope.SINGLETON
    pool_size: int = 0
    lazy: bool = False
    start_ran: bool = False
    _pool: queue.Queue | None = field(default=None, repr=False, compare=False)


class Registry:
    """A thread-safe mapping of keys to service entries."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._services: dict[str, ServiceEntry] = {}

    def register(self, key: str, provider: Provider, dependencies=None) -> None:
        """Register (or overwrite) a service built by ``provider``."""
        with self._lock:
            self._services[key] = ServiceEntry(
                key=key, provider=provider, dependencies=list(dependencies or ())
            )

    def register_value(self, key: str, value: Any) -> None:
        """Register (or overwrite) a service with a ready instance."""
        with self._lock:
            self._services[key] = ServiceEntry(key=key, instance=value, instantiated=True)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._services

    def get(self, key: str) -> ServiceEntry | None:
        with self._lock:
            return self._services.get(key)

    def get_instance(self, key: str) -> Any:
        """Return the built instance; raise KeyError if there is none."""
        with self._lock:
            entry = self._services.get(key)
            if entry is None or not entry.instantiated:
                raise KeyError(key)
            return entry.instance

    def get_singleton(self, key: str) -> Any:
        """Return a cached singleton instance; raise KeyError if there is none."""
        with self._lock:
            entry = self._services.get(key)
            if entry is None or not entry.instantiated or entry.scope != Scope.SINGLETON:
                raise KeyError(key)
            return entry.instance

    def set_instance(self, key: str, instance: Any) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.instance = instance
                entry.instantiated = True

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._services)

    def __len__(self) -> int:
        with self._lock:
            return len(self._services)

    def clear(self) -> None:
        with self._lock:
            self._services = {}

    def remove(self, key: str) -> None:
        with self._lock:
            self._services.pop(key, None)

    def dependencies(self, key: str) -> list[str]:
        with self._lock:
            entry = self._services.get(key)
            return list(entry.dependencies) if entry is not None else []

    def all_dependencies(self) -> dict[str, list[str]]:
        with self._lock:
            return {key: list(entry.dependencies) for key, entry in self._services.items()}

    def add_on_start(self, key: str, hook: Hook) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.on_start.append(hook)

    def add_on_stop(self, key: str, hook: Hook) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.on_stop.append(hook)

    def all_entries(self) -> list[ServiceEntry]:
        with self._lock:
            return list(self._services.values())

    def set_scope(self, key: str, scope: Scope) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.scope = scope

    def set_pool_size(self, key: str, size: int) -> None:
        """Set the pool capacity; a positive size creates a fresh, empty pool."""
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.pool_size = size
                if size > 0:
                    entry._pool = queue.Queue(maxsize=size)

    def acquire_from_pool(self, key: str) -> Any:
        """Take an idle instance from the pool; raise KeyError if none is available."""
        with self._lock:
            entry = self._services.get(key)
        if entry is None or entry._pool is None:
            raise KeyError(key)
        try:
            return entry._pool.get_nowait()
        except queue.Empty:
            raise KeyError(key) from None

    def release_to_pool(self, key: str, instance: Any) -> bool:
        """Return an instance to the pool; False if there is no pool or it is full."""
        with self._lock:
            entry = self._services.get(key)
        if entry is None or entry._pool is None:
            return False
        try:
            entry._pool.put_nowait(instance)
        except queue.Full:
            return False
        return True

    def set_lazy(self, key: str, lazy: bool) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.lazy = lazy

    def is_lazy(self, key: str) -> bool:
        with self._lock:
            entry = self._services.get(key)
            return entry.lazy if entry is not None else False

    def set_start_ran(self, key: str) -> None:
        with self._lock:
            entry = self._services.get(key)
            if entry is not None:
                entry.start_ran = True