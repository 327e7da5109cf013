# needle

A small dependency injection container for Python applications. Services are
registered under string keys, resolved on demand according to their scope, and
take part in a start/stop lifecycle ordered by their dependencies.

## Features

- Providers and ready-made values, registered under string keys
- Scopes: singleton (default), transient, per-request and pooled
- A dependency graph with cycle detection, validation and topological ordering
- Start and stop hooks run in dependency order, sequentially or in parallel groups
- Lazy services whose start hooks run on first resolution once the container is running
- Decorators that wrap each newly built instance
- Replacing registrations, e.g. in tests
- Observers for resolve, provide, start and stop events
- An optional shutdown timeout

## Installation

```
pip install needle
```

## Usage

A provider is called as `provider(ctx, container)`, a decorator as
`decorator(ctx, container, instance)` and a hook as `hook(ctx)`. Failures are
reported by raising.

```python
from needle.container import Container

container = Container()
container.register_value("config", {"port": 8080})
container.register(
    "server",
    lambda ctx, c: {"config": c.resolve("config", ctx)},
    ["config"],
)
container.add_on_start("server", lambda ctx: print("server starting"))
container.add_on_stop("server", lambda ctx: print("server stopping"))

server = container.resolve("server")
assert server["config"]["port"] == 8080

container.start()   # builds eager services, runs start hooks in dependency order
container.stop()    # runs stop hooks in reverse order
```

Registering a key twice raises `ContainerError`; a registration that would
close a dependency cycle raises `CircularDependencyError`; resolving an unknown
key raises `ServiceNotFoundError`. `validate()` raises if a declared
dependency is missing or the dependencies form a cycle. `replace()` and
`replace_value()` drop any earlier registration for the key instead of
raising.

### Scopes

```python
from needle.container import Context
from needle.scope import Scope

container.register("session", make_session)
container.set_scope("session", Scope.REQUEST)
ctx = Context().with_request_scope()
session = container.resolve("session", ctx)   # same instance within ctx

container.register("conn", make_connection)
container.set_scope("conn", Scope.POOLED)
container.set_pool_size("conn", 4)
conn = container.resolve("conn")
container.release("conn", conn)   # False if the pool is full
```

A request-scoped service resolved without a request scope in its context
raises `ContainerError`.

### Lifecycle options

```python
container = Container(
    parallel=True,            # start/stop independent services in threads
    shutdown_timeout=5.0,     # seconds; hooks can use ctx.check() or ctx.remaining
    on_resolve=[lambda key, seconds, error: ...],
    on_provide=[lambda key: ...],
    on_start=[lambda key, seconds, error: ...],
    on_stop=[lambda key, seconds, error: ...],
)
container.set_lazy("report", True)
```

`start()` raises `ContainerError` when the container is already started.
`stop()` does nothing unless the container is running; it runs every stop hook
it can and then raises one `ContainerError` whose `errors` attribute lists the
individual failures. `state()` returns a `State`.

`needle.lifecycle.Lifecycle` is a plain holder of start and stop hooks that can
be combined with `append()`; the container does not read it by itself.

### The dependency graph

`container.graph()` returns a copy of the `needle.graph.Graph`, which offers
`topological_sort()`, `startup_order()`, `shutdown_order()`,
`resolution_order(target)`, `parallel_startup_groups()`, `detect_cycles()`,
`find_cycle_path(start)` and `validate()`. Orderings of a graph with a cycle
raise `CycleDetectedError`.

## What this package does not do

Keys are plain strings chosen by the caller: there is no deriving keys from
types, no typed invoke helpers, no interface binding, no reusable modules of
registrations, and no liveness or readiness checks. There is no command-line
tool.

## Running the tests

```
pip install -e ".[test]"
pytest
```