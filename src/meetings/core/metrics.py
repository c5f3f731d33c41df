"""Prometheus metrics for meeting operations.

Metrics exported:
- meetings_operations_total: Counter of orchestrator operations by outcome
- meetings_protocol_writes_total: Counter of protocol writes (state events, messages,
  membership changes, room creation) by kind and outcome
- meetings_batch_failures_total: Counter of failed units inside fan-out batches
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

from prometheus_client import Counter

T = TypeVar("T")

operations_total = Counter(
    "meetings_operations_total",
    "Total number of meeting operations",
    labelnames=["operation", "status"],
)

protocol_writes_total = Counter(
    "meetings_protocol_writes_total",
    "Total number of protocol writes issued",
    labelnames=["kind", "status"],
)

batch_failures_total = Counter(
    "meetings_batch_failures_total",
    "Total number of failed units inside fan-out batches",
    labelnames=["operation"],
)


class OrchestratorMetrics:
    """Records metrics with consistent labels."""

    def record_operation(self, operation: str, status: str) -> None:
        """Record an operation outcome.

        Args:
            operation: Operation name (e.g., "create", "close")
            status: "success" or the error class name
        """
        operations_total.labels(operation=operation, status=status).inc()

    def record_write(self, kind: str, status: str) -> None:
        protocol_writes_total.labels(kind=kind, status=status).inc()

    def record_batch_failures(self, operation: str, count: int) -> None:
        if count > 0:
            batch_failures_total.labels(operation=operation).inc(count)

    async def track_write(self, kind: str, write: Awaitable[T]) -> T:
        """Await one protocol write and count it under *kind*."""
        try:
            result = await write
        except Exception:
            self.record_write(kind, "error")
            raise
        self.record_write(kind, "success")
        return result
