"""Dependency injection container with scopes, a dependency graph and lifecycle hooks."""

__version__ = "0.1.0"

__all__ = [
    "container",
    "graph",
    "lifecycle",
    "registry",
    "scope",
]