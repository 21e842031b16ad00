"""Outcome types separating expected skips from real failures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """The operation produced a value."""

    value: T


@dataclass(frozen=True)
class Skip:
    """Expected, non-retryable rejection (malformed input, package gone)."""

    reason: str


@dataclass(frozen=True)
class Fail:
    """A real failure (timeout, server error) that may succeed on a later run."""

    error: BaseException

    @property
    def message(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


Outcome = Union[Resolved[T], Skip, Fail]
