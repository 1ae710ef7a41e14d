"""
Operation timing and outcome tracking.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

import numpy as np
import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class OperationMetric:
    """One tracked operation."""
    operation: str
    duration: float
    success: bool
    timestamp: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None
    cache_hit: bool = False
    records_processed: Optional[int] = None


class PerformanceMonitor:
    """
    Ring buffer of operation metrics.

    track() never alters the outcome of the wrapped call: its result is
    returned and its exception re-raised unchanged.
    """

    def __init__(self, max_entries: int = 10000):
        self._metrics: Deque[OperationMetric] = deque(maxlen=max_entries)

    async def track(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        cache_hit: Optional[Callable[[T], bool]] = None,
        records_processed: Optional[Callable[[T], Optional[int]]] = None,
    ) -> T:
        """
        Await fn() and record its duration and outcome.

        Args:
            operation: Name the metric is recorded under
            fn: Zero-argument coroutine factory
            cache_hit: Reads from the result whether it was served from cache
            records_processed: Reads from the result how many records it handled
        """
        start = time.perf_counter()
        try:
            result = await fn()
        except Exception as e:
            self._record(operation, time.perf_counter() - start, False, error=str(e))
            raise

        duration = time.perf_counter() - start
        hit, count = False, None
        try:
            if cache_hit is not None:
                hit = bool(cache_hit(result))
            if records_processed is not None:
                count = records_processed(result)
        except Exception as e:
            logger.warning("Could not inspect operation result", operation=operation, error=str(e))
        self._record(operation, duration, True, cache_hit=hit, records_processed=count)
        return result

    def _record(self, operation: str, duration: float, success: bool, **extra: Any) -> None:
        try:
            self._metrics.append(OperationMetric(operation=operation, duration=duration, success=success, **extra))
        except Exception as e:
            logger.warning("Failed to record metric", operation=operation, error=str(e))

    def get_metrics(self, operation: Optional[str] = None) -> List[OperationMetric]:
        if operation is None:
            return list(self._metrics)
        return [m for m in self._metrics if m.operation == operation]

    def average_duration(self, operation: Optional[str] = None) -> float:
        metrics = self.get_metrics(operation)
        if not metrics:
            return 0.0
        return float(np.mean([m.duration for m in metrics]))

    def p95_duration(self, operation: Optional[str] = None) -> float:
        metrics = self.get_metrics(operation)
        if not metrics:
            return 0.0
        return float(np.percentile([m.duration for m in metrics], 95))

    def error_rate(self, operation: Optional[str] = None) -> float:
        metrics = self.get_metrics(operation)
        if not metrics:
            return 0.0
        return sum(1 for m in metrics if not m.success) / len(metrics)

    def success_rate(self, operation: Optional[str] = None) -> float:
        metrics = self.get_metrics(operation)
        if not metrics:
            return 0.0
        return sum(1 for m in metrics if m.success) / len(metrics)

    def cache_hit_rate(self, operation: Optional[str] = None) -> float:
        metrics = self.get_metrics(operation)
        if not metrics:
            return 0.0
        return sum(1 for m in metrics if m.cache_hit) / len(metrics)

    def summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate figures, overall or for one operation."""
        metrics = self.get_metrics(operation)
        operations = sorted({m.operation for m in metrics})
        return {
            "operation": operation,
            "total_operations": len(metrics),
            "average_duration": self.average_duration(operation),
            "p95_duration": self.p95_duration(operation),
            "error_rate": self.error_rate(operation),
            "success_rate": self.success_rate(operation),
            "cache_hit_rate": self.cache_hit_rate(operation),
            "operations": operations,
        }

    def clear(self) -> None:
        self._metrics.clear()

    def __len__(self) -> int:
        return len(self._metrics)
