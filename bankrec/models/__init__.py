"""Data models for the bank reconciliation engine."""

from .enums import (
    AuditAction,
    BankAccountType,
    BankTransactionType,
    OutstandingItemType,
    Priority,
    ReconciliationExceptionType,
    ReconciliationMatchStatus,
    ReconciliationMatchType,
    ReconciliationRuleType,
    ReconciliationSessionStatus,
    ReconciliationSessionType,
    RecommendationType,
    StatementProcessingStatus,
)
from .banking import (
    BankAccount,
    BankStatement,
    BankTransaction,
    LedgerEntry,
    MatchingCriteria,
    ReconciliationAction,
    ReconciliationRule,
)
from .reconciliation import (
    AnalyticsRecommendation,
    AuditEntry,
    BankReconciliationAnalytics,
    CostSavings,
    MatchingStats,
    OutstandingItem,
    PatternData,
    ProcessingPerformance,
    ReconciliationException,
    ReconciliationMatch,
    ReconciliationRecommendation,
    ReconciliationSession,
    ReconciliationSummary,
    RuleEffectiveness,
    TrendData,
)
from .context import UserContext
from .serialization import to_primitive

__all__ = [
    # Enums
    "AuditAction",
    "BankAccountType",
    "BankTransactionType",
    "OutstandingItemType",
    "Priority",
    "ReconciliationExceptionType",
    "ReconciliationMatchStatus",
    "ReconciliationMatchType",
    "ReconciliationRuleType",
    "ReconciliationSessionStatus",
    "ReconciliationSessionType",
    "RecommendationType",
    "StatementProcessingStatus",
    # Banking
    "BankAccount",
    "BankStatement",
    "BankTransaction",
    "LedgerEntry",
    "MatchingCriteria",
    "ReconciliationAction",
    "ReconciliationRule",
    # Reconciliation
    "AnalyticsRecommendation",
    "AuditEntry",
    "BankReconciliationAnalytics",
    "CostSavings",
    "MatchingStats",
    "OutstandingItem",
    "PatternData",
    "ProcessingPerformance",
    "ReconciliationException",
    "ReconciliationMatch",
    "ReconciliationRecommendation",
    "ReconciliationSession",
    "ReconciliationSummary",
    "RuleEffectiveness",
    "TrendData",
    # Context
    "UserContext",
    "to_primitive",
]
