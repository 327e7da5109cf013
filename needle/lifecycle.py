"""Collections of start and stop hooks that can be combined."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

Hook = Callable[[Any], Any]


@dataclass
class Lifecycle:
    """Start and stop hooks, kept in the order they were added."""

    start_hooks: list[Hook] = field(default_factory=list)
    stop_hooks: list[Hook] = field(default_factory=list)

    def append(self, other: Lifecycle | None) -> None:
        """Add all hooks of ``other`` after this lifecycle's own."""
        if other is None:
            return
        self.start_hooks.extend(other.start_hooks)
        self.stop_hooks.extend(other.stop_hooks)

    def on_start(self, hook: Hook) -> None:
        self.start_hooks.append(hook)

    def on_stop(self, hook: Hook) -> None:
        self.stop_hooks.append(hook)