"""Lifetimes a registered service can have."""

from __future__ import annotations

import enum


class Scope(enum.IntEnum):
    """How long a resolved instance lives and who shares it."""

    SINGLETON = 0
    TRANSIENT = 1
    REQUEST = 2
    POOLED = 3

    def __str__(self) -> str:
        return self.name.lower()