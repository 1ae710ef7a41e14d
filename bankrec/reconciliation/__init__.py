"""Reconciliation engine components."""

from .matching import MatchingEngine, MatchingResult
from .summary import compute_summary
from .orchestrator import (
    MATCH_TRANSITIONS,
    SESSION_TRANSITIONS,
    ReconciliationOrchestrator,
    ReconciliationOutcome,
    check_match_transition,
    transition_session,
)
from .analytics import AnalyticsGenerator

__all__ = [
    "MatchingEngine",
    "MatchingResult",
    "compute_summary",
    "MATCH_TRANSITIONS",
    "SESSION_TRANSITIONS",
    "ReconciliationOrchestrator",
    "ReconciliationOutcome",
    "check_match_transition",
    "transition_session",
    "AnalyticsGenerator",
]
