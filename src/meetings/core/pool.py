"""Bounded-concurrency fan-out that collects failures instead of failing fast."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_CONCURRENCY = 20


@dataclass
class PoolResult(Generic[T, R]):
    """Outcome of a fan-out: per-item results plus every ``(item, error)`` pair."""

    results: list[tuple[T, R]] = field(default_factory=list)
    failures: list[tuple[T, BaseException]] = field(default_factory=list)

    @property
    def any_failed(self) -> bool:
        return bool(self.failures)


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = MAX_CONCURRENCY,
) -> PoolResult[T, R]:
    """Run *worker* for every item with at most ``min(len(items), concurrency, 20)`` in flight.

    Every item is attempted. Exceptions are collected with their item and
    never abort the remaining work; ``asyncio.CancelledError`` still
    propagates.
    """
    outcome: PoolResult[T, R] = PoolResult()
    if not items:
        return outcome

    semaphore = asyncio.Semaphore(max(1, min(len(items), concurrency, MAX_CONCURRENCY)))

    async def _run(item: T) -> None:
        async with semaphore:
            try:
                value = await worker(item)
            except Exception as exc:
                logger.debug("Fan-out unit failed: %r", item, exc_info=True)
                outcome.failures.append((item, exc))
            else:
                outcome.results.append((item, value))

    await asyncio.gather(*(_run(item) for item in items))
    return outcome
