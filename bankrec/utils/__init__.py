"""Utility modules."""

from .audit_logger import AuditLogger
from .cache import CacheKey, EvictionStrategy, LeastRecentlyUsedEviction, ReconciliationCache
from .logging_setup import configure_logging
from .performance import OperationMetric, PerformanceMonitor
from .text_similarity import description_similarity, fuzzy_similarity, jaccard_similarity

__all__ = [
    "AuditLogger",
    "CacheKey",
    "EvictionStrategy",
    "LeastRecentlyUsedEviction",
    "ReconciliationCache",
    "configure_logging",
    "OperationMetric",
    "PerformanceMonitor",
    "description_similarity",
    "fuzzy_similarity",
    "jaccard_similarity",
]
