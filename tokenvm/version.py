"""Semantic version of the token VM."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Semantic:
    """A major.minor.patch version number."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"


VERSION = Semantic(major=0, minor=0, patch=1)