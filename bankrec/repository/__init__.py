"""Persistence contract and the in-memory implementation."""

from .base import STATEMENT_RESULT_FIELDS, ReconciliationRepository
from .memory import InMemoryRepository

__all__ = ["STATEMENT_RESULT_FIELDS", "ReconciliationRepository", "InMemoryRepository"]
