"""Reusable async retry policy with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

log = structlog.get_logger("npmsentinel.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``, capped
    at ``max_delay``.  With *jitter* enabled the actual sleep is drawn
    uniformly from ``[0, delay]`` so concurrent callers do not retry in
    lockstep.  Only exceptions matching *retry_on* are retried; anything else
    propagates immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    retry_on: tuple[type[BaseException], ...] = field(default=(Exception,))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retrying after failed *attempt* (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            return random.uniform(0, delay)
        return delay

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        operation: str | None = None,
        **kwargs: Any,
    ) -> T:
        """Await ``fn(*args, **kwargs)``, retrying on failure.

        Re-raises the last exception once *max_attempts* is exhausted.
        """
        name = operation or getattr(fn, "__qualname__", repr(fn))
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    log.error(
                        "retry.exhausted",
                        operation=name,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise
                delay = self.delay_for(attempt)
                log.warning(
                    "retry.attempt_failed",
                    operation=name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    retry_in=round(delay, 3),
                    error=f"{type(exc).__name__}: {exc}",
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


STATE_COMMIT_RETRY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, jitter=True)
