"""The dependency injection container: registration, resolution and lifecycle."""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable

from needle.graph import CycleDetectedError, Graph
from needle.registry import Hook, Provider, Registry, ServiceEntry
from needle.scope import Scope

ResolveObserver = Callable[[str, float, "BaseException | None"], None]
ProvideObserver = Callable[[str], None]
LifecycleObserver = Callable[[str, float, "BaseException | None"], None]
Decorator = Callable[..., Any]


class ContainerError(Exception):
    """Base error raised by the container.

    ``errors`` holds the individual failures when several are reported at once.
    """

    def __init__(self, message: str, *, errors: Iterable[BaseException] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


class ServiceNotFoundError(ContainerError):
    """Raised when a key has no registration."""


class CircularDependencyError(ContainerError):
    """Raised when services depend on each other in a cycle."""


def _wrap(message: str, cause: BaseException) -> ContainerError:
    error = ContainerError(message)
    error.__cause__ = cause
    return error


class State(enum.IntEnum):
    """Lifecycle state of a container."""

    NEW = 0
    STARTING = 1
    RUNNING = 2
    STOPPING = 3
    STOPPED = 4


class RequestScope:
    """Instances shared by everything resolved within one request."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._instances: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        """Return the instance stored for ``key``; raise KeyError if absent."""
        with self._lock:
            return self._instances[key]

    def set(self, key: str, instance: Any) -> None:
        with self._lock:
            self._instances[key] = instance

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._instances


@dataclasses.dataclass(frozen=True)
class Context:
    """Carries a request scope and an optional deadline through resolution and hooks."""

    request_scope: RequestScope | None = None
    deadline: float | None = None

    def with_request_scope(self) -> Context:
        """Return a copy of this context with a fresh request scope."""
        return dataclasses.replace(self, request_scope=RequestScope())

    def with_timeout(self, seconds: float) -> Context:
        """Return a copy whose deadline is at most ``seconds`` from now."""
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return dataclasses.replace(self, deadline=deadline)

    @property
    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise TimeoutError if the deadline has passed."""
        if self.expired:
            raise TimeoutError("context deadline exceeded")


_BACKGROUND = Context()


def with_request_scope(ctx: Context | None = None) -> Context:
    """Return ``ctx`` (or a blank context) with a fresh request scope."""
    return (ctx if ctx is not None else _BACKGROUND).with_request_scope()


class Container:
    """Holds services, resolves them by key and runs their lifecycle hooks.

    Providers are called as ``provider(ctx, container)``, decorators as
    ``decorator(ctx, container, instance)`` and hooks as ``hook(ctx)``.
    A failure is reported by raising.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger | None = None,
        on_resolve: Iterable[ResolveObserver] = (),
        on_provide: Iterable[ProvideObserver] = (),
        on_start: Iterable[LifecycleObserver] = (),
        on_stop: Iterable[LifecycleObserver] = (),
        parallel: bool = False,
        shutdown_timeout: float | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._registry = Registry()
        self._graph = Graph()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._state = State.NEW
        self._local = threading.local()
        self._decorators: dict[str, list[Decorator]] = {}
        self._decorators_lock = threading.Lock()
        self._on_resolve = list(on_resolve)
        self._on_provide = list(on_provide)
        self._on_start = list(on_start)
        self._on_stop = list(on_stop)
        self._parallel = parallel
        self._shutdown_timeout = shutdown_timeout

    # ----------------------------------------------------------- registration

    def register(self, key: str, provider: Provider, dependencies: Iterable[str] | None = None) -> None:
        """Register a provider under ``key``."""
        deps = list(dependencies or ())
        with self._lock:
            if self._registry.has(key):
                raise ContainerError(f"service already registered: {key}")
            self._registry.register(key, provider, deps)
            self._graph.add_node(key, deps)
            if deps and self._graph.has_cycle():
                self._registry.remove(key)
                self._graph.remove_node(key)
                raise CircularDependencyError(f"circular dependency detected for: {key}")
        self._notify_provide(key)

    def register_value(self, key: str, value: Any) -> None:
        """Register a ready instance under ``key``."""
        with self._lock:
            if self._registry.has(key):
                raise ContainerError(f"service already registered: {key}")
            self._registry.register_value(key, value)
            self._graph.add_node(key, None)
        self._notify_provide(key)

    def replace(self, key: str, provider: Provider, dependencies: Iterable[str] | None = None) -> None:
        """Register ``provider`` under ``key``, dropping any earlier registration."""
        deps = list(dependencies or ())
        with self._lock:
            self._registry.remove(key)
            self._graph.remove_node(key)
            self._registry.register(key, provider, deps)
            self._graph.add_node(key, deps)
            if self._graph.has_cycle():
                path = self._graph.find_cycle_path(key)
                self._registry.remove(key)
                self._graph.remove_node(key)
                raise CircularDependencyError(f"circular dependency detected: {path}")

    def replace_value(self, key: str, value: Any) -> None:
        """Register ``value`` under ``key``, dropping any earlier registration."""
        with self._lock:
            self._registry.remove(key)
            self._graph.remove_node(key)
            self._registry.register_value(key, value)
            self._graph.add_node(key, None)

    def add_decorator(self, key: str, decorator: Decorator) -> None:
        """Wrap every instance built for ``key``; decorators run in the order added."""
        with self._decorators_lock:
            self._decorators.setdefault(key, []).append(decorator)

    def add_on_start(self, key: str, hook: Hook) -> None:
        self._registry.add_on_start(key, hook)

    def add_on_stop(self, key: str, hook: Hook) -> None:
        self._registry.add_on_stop(key, hook)

    def set_scope(self, key: str, scope: Scope) -> None:
        self._registry.set_scope(key, scope)

    def set_pool_size(self, key: str, size: int) -> None:
        self._registry.set_pool_size(key, size)

    def set_lazy(self, key: str, lazy: bool) -> None:
        self._registry.set_lazy(key, lazy)

    def release(self, key: str, instance: Any) -> bool:
        """Return a pooled instance; False when there is no pool or it is full."""
        return self._registry.release_to_pool(key, instance)

    # ---------------------------------------------------------------- queries

    def has(self, key: str) -> bool:
        with self._lock:
            return self._registry.has(key)

    def keys(self) -> list[str]:
        with self._lock:
            return self._registry.keys()

    def get_instance(self, key: str) -> Any:
        """Return an already built instance; raise KeyError if there is none."""
        with self._lock:
            return self._registry.get_instance(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)

    def validate(self) -> None:
        """Raise if a dependency is missing or the dependencies form a cycle."""
        with self._lock:
            missing = self._graph.validate()
            if missing:
                raise ContainerError(f"missing dependencies: {missing}")
            if self._graph.has_cycle():
                cycles = self._graph.get_all_cycle_paths()
                raise CircularDependencyError(f"circular dependencies detected: {cycles}")

    def graph(self) -> Graph:
        """Return a copy of the dependency graph."""
        with self._lock:
            return self._graph.clone()

    def state(self) -> State:
        with self._lock:
            return self._state

    # ------------------------------------------------------------- resolution

    def resolve(self, key: str, ctx: Context | None = None) -> Any:
        """Return the instance for ``key``, building it if its scope requires."""
        ctx = ctx if ctx is not None else _BACKGROUND
        if not self._on_resolve:
            try:
                return self._registry.get_singleton(key)
            except KeyError:
                pass
        return self._resolve_slow(key, ctx)

    def _resolving(self) -> set[str]:
        keys = getattr(self._local, "keys", None)
        if keys is None:
            keys = self._local.keys = set()
        return keys

    def _resolve_slow(self, key: str, ctx: Context) -> Any:
        start = time.perf_counter()
        resolving = self._resolving()
        if key in resolving:
            error = CircularDependencyError(f"circular resolution detected for: {key}")
            self._notify_resolve(key, time.perf_counter() - start, error)
            raise error
        resolving.add(key)
        try:
            with self._lock:
                entry = self._registry.get(key)
            if entry is None:
                error = ServiceNotFoundError(f"service not found: {key}")
                self._notify_resolve(key, time.perf_counter() - start, error)
                raise error
            try:
                result = self._resolve_with_scope(key, entry, ctx)
            except Exception as exc:
                self._notify_resolve(key, time.perf_counter() - start, exc)
                raise
            self._notify_resolve(key, time.perf_counter() - start, None)
            return result
        finally:
            resolving.discard(key)

    def _resolve_with_scope(self, key: str, entry: ServiceEntry, ctx: Context) -> Any:
        if entry.scope == Scope.TRANSIENT:
            return self._build(key, entry, ctx)
        if entry.scope == Scope.REQUEST:
            return self._resolve_request(key, entry, ctx)
        if entry.scope == Scope.POOLED:
            return self._resolve_pooled(key, entry, ctx)
        return self._resolve_singleton(key, entry, ctx)

    def _build(self, key: str, entry: ServiceEntry, ctx: Context) -> Any:
        for dep in entry.dependencies:
            try:
                self.resolve(dep, ctx)
            except Exception as exc:
                raise ContainerError(f"failed to resolve dependency {dep} for {key}") from exc
        if entry.provider is None:
            raise ContainerError(f"no provider registered for {key}")
        try:
            instance = entry.provider(ctx, self)
        except Exception as exc:
            raise ContainerError(f"provider failed for {key}") from exc
        return self._apply_decorators(key, instance, ctx)

    def _resolve_singleton(self, key: str, entry: ServiceEntry, ctx: Context) -> Any:
        if entry.instantiated:
            return entry.instance
        instance = self._build(key, entry, ctx)
        self._registry.set_instance(key, instance)
        if entry.lazy and not entry.start_ran and self.state() == State.RUNNING:
            self._run_lazy_start(key, entry, ctx)
        return instance

    def _run_lazy_start(self, key: str, entry: ServiceEntry, ctx: Context) -> None:
        start = time.perf_counter()
        error = None
        for hook in entry.on_start:
            self._logger.debug("running lazy OnStart hook for %s", key)
            try:
                hook(ctx)
            except Exception as exc:
                error = _wrap(f"OnStart hook failed for {key}", exc)
                break
        self._registry.set_start_ran(key)
        self._notify_start(key, time.perf_counter() - start, error)
        if error is not None:
            raise error from error.__cause__

    def _resolve_request(self, key: str, entry: ServiceEntry, ctx: Context) -> Any:
        scope = ctx.request_scope
        if scope is None:
            raise ContainerError(
                f"request scope not found in context for {key}; use with_request_scope(ctx)"
            )
        try:
            return scope.get(key)
        except KeyError:
            pass
        instance = self._build(key, entry, ctx)
        scope.set(key, instance)
        return instance

    def _resolve_pooled(self, key: str, entry: ServiceEntry, ctx: Context) -> Any:
        try:
            return self._registry.acquire_from_pool(key)
        except KeyError:
            return self._build(key, entry, ctx)

    def _apply_decorators(self, key: str, instance: Any, ctx: Context) -> Any:
        with self._decorators_lock:
            decorators = list(self._decorators.get(key, ()))
        for decorator in decorators:
            try:
                instance = decorator(ctx, self, instance)
            except Exception as exc:
                raise ContainerError(f"decorator failed for {key}") from exc
        return instance

    # -------------------------------------------------------------- lifecycle

    def start(self, ctx: Context | None = None) -> None:
        """Build every eager service in dependency order and run its start hooks."""
        ctx = ctx if ctx is not None else _BACKGROUND
        with self._lock:
            if self._state not in (State.NEW, State.STOPPED):
                raise ContainerError("container already started")
            self._state = State.STARTING

        if self._parallel:
            self._start_parallel(ctx)
        else:
            self._start_sequential(ctx)

        with self._lock:
            self._state = State.RUNNING

    def _start_sequential(self, ctx: Context) -> None:
        try:
            order = self._graph.startup_order()
        except CycleDetectedError as exc:
            raise ContainerError("failed to determine startup order") from exc
        for key in order:
            self._start_service(key, ctx)

    def _start_parallel(self, ctx: Context) -> None:
        try:
            groups = self._graph.parallel_startup_groups()
        except CycleDetectedError as exc:
            raise ContainerError("failed to determine startup groups") from exc
        for group in groups:
            self._start_group(group.nodes, ctx)

    def _start_group(self, keys: list[str], ctx: Context) -> None:
        if len(keys) == 1:
            self._start_service(keys[0], ctx)
            return
        eager = [key for key in keys if not self._registry.is_lazy(key)]
        if not eager:
            return
        with ThreadPoolExecutor(max_workers=len(eager)) as pool:
            futures = [pool.submit(self._start_service, key, ctx) for key in eager]
        for future in futures:
            error = future.exception()
            if error is not None:
                raise error

    def _start_service(self, key: str, ctx: Context) -> None:
        if self._registry.is_lazy(key):
            return
        start = time.perf_counter()
        try:
            self.resolve(key, ctx)
        except Exception as exc:
            self._notify_start(key, time.perf_counter() - start, exc)
            raise ContainerError(f"failed to resolve {key} during startup") from exc

        entry = self._registry.get(key)
        if entry is None:
            return

        error = None
        for hook in entry.on_start:
            self._logger.debug("running OnStart hook for %s", key)
            try:
                hook(ctx)
            except Exception as exc:
                error = _wrap(f"OnStart hook failed for {key}", exc)
                break

        self._registry.set_start_ran(key)
        self._notify_start(key, time.perf_counter() - start, error)
        if error is not None:
            raise error from error.__cause__

    def stop(self, ctx: Context | None = None) -> None:
        """Run stop hooks in reverse dependency order; a no-op unless running."""
        ctx = ctx if ctx is not None else _BACKGROUND
        with self._lock:
            if self._state != State.RUNNING:
                return
            self._state = State.STOPPING

        if self._shutdown_timeout:
            ctx = ctx.with_timeout(self._shutdown_timeout)

        errors = self._stop_parallel(ctx) if self._parallel else self._stop_sequential(ctx)

        with self._lock:
            self._state = State.STOPPED

        if errors:
            message = f"shutdown errors: {[str(error) for error in errors]}"
            raise ContainerError(message, errors=errors) from errors[0]

    def _stop_sequential(self, ctx: Context) -> list[BaseException]:
        try:
            order = self._graph.shutdown_order()
        except CycleDetectedError as exc:
            return [_wrap("failed to determine shutdown order", exc)]
        errors: list[BaseException] = []
        for key in order:
            try:
                ctx.check()
            except TimeoutError as exc:
                errors.append(_wrap("shutdown timeout exceeded", exc))
                break
            error = self._stop_service(key, ctx)
            if error is not None:
                errors.append(error)
        return errors

    def _stop_parallel(self, ctx: Context) -> list[BaseException]:
        try:
            groups = self._graph.parallel_shutdown_groups()
        except CycleDetectedError as exc:
            return [_wrap("failed to determine shutdown groups", exc)]
        errors: list[BaseException] = []
        for group in groups:
            try:
                ctx.check()
            except TimeoutError as exc:
                errors.append(_wrap("shutdown timeout exceeded", exc))
                break
            errors.extend(self._stop_group(group.nodes, ctx))
        return errors

    def _stop_group(self, keys: list[str], ctx: Context) -> list[BaseException]:
        if len(keys) == 1:
            error = self._stop_service(keys[0], ctx)
            return [error] if error is not None else []
        live = []
        for key in keys:
            entry = self._registry.get(key)
            if entry is not None and entry.instantiated:
                live.append(key)
        if not live:
            return []
        with ThreadPoolExecutor(max_workers=len(live)) as pool:
            results = list(pool.map(lambda key: self._stop_service(key, ctx), live))
        return [error for error in results if error is not None]

    def _stop_service(self, key: str, ctx: Context) -> ContainerError | None:
        entry = self._registry.get(key)
        if entry is None or not entry.instantiated:
            return None
        start = time.perf_counter()
        error = None
        for hook in reversed(entry.on_stop):
            self._logger.debug("running OnStop hook for %s", key)
            try:
                hook(ctx)
            except Exception as exc:
                error = _wrap(f"OnStop hook failed for {key}", exc)
        self._notify_stop(key, time.perf_counter() - start, error)
        return error

    # -------------------------------------------------------------- observers

    def _notify_resolve(self, key: str, duration: float, error: BaseException | None) -> None:
        for observer in self._on_resolve:
            observer(key, duration, error)

    def _notify_provide(self, key: str) -> None:
        for observer in self._on_provide:
            observer(key)

    def _notify_start(self, key: str, duration: float, error: BaseException | None) -> None:
        for observer in self._on_start:
            observer(key, duration, error)

    def _notify_stop(self, key: str, duration: float, error: BaseException | None) -> None:
        for observer in self._on_stop:
            observer(key, duration, error)