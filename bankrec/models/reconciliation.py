"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import (
    AuditAction,
    OutstandingItemType,
    Priority,
    ReconciliationExceptionType,
    ReconciliationMatchStatus,
    ReconciliationMatchType,
    ReconciliationSessionStatus,
    ReconciliationSessionType,
    RecommendationType,
)
from .serialization import to_primitive


@dataclass
class ReconciliationMatch:
    """A scored pairing of one bank transaction with one ledger entry."""
    bank_transaction_id: str
    ledger_transaction_id: str
    confidence_score: float
    id: str = field(default_factory=lambda: str(uuid4()))
    session_id: Optional[str] = None
    match_type: ReconciliationMatchType = ReconciliationMatchType.FUZZY
    matching_criteria: List[str] = field(default_factory=list)
    match_details: Dict[str, Any] = field(default_factory=dict)
    status: ReconciliationMatchStatus = ReconciliationMatchStatus.PENDING

    rule_id: Optional[str] = None
    variance_amount: Optional[Decimal] = None
    variance_reason: Optional[str] = None
    notes: Optional[str] = None

    # Audit
    matched_by: str = "system"
    matched_at: datetime = field(default_factory=datetime.utcnow)
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_auto_approved(self) -> bool:
        return self.status == ReconciliationMatchStatus.AUTO_APPROVED

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class ReconciliationSession:
    """One reconciliation attempt over one (account, statement) pair."""
    organization_id: str
    bank_account_id: str
    bank_statement_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    session_name: str = ""
    session_type: ReconciliationSessionType = ReconciliationSessionType.DAILY
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: ReconciliationSessionStatus = ReconciliationSessionStatus.DRAFT

    started_by: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None

    auto_match_enabled: bool = True
    manual_review_required: bool = False

    # Written once when the run finishes
    total_transactions: int = 0
    matched_transactions: int = 0
    unmatched_transactions: int = 0
    variance_amount: Decimal = Decimal("0")
    reconciliation_difference: Decimal = Decimal("0")
    reconciliation_rate: float = 0.0

    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_finished(self) -> bool:
        return self.status in (
            ReconciliationSessionStatus.COMPLETED,
            ReconciliationSessionStatus.REVIEW_REQUIRED,
            ReconciliationSessionStatus.CANCELLED,
        )

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass(frozen=True)
class OutstandingItem:
    """An unmatched bank or ledger transaction after a run."""
    id: str
    type: OutstandingItemType
    transaction_id: str
    description: str
    amount: Decimal
    date: Optional[date]
    age_days: int
    category: str
    reason: str
    action_required: str
    priority: Priority


@dataclass(frozen=True)
class ReconciliationException:
    """An anomaly detected while building the summary."""
    id: str
    type: ReconciliationExceptionType
    severity: Priority
    description: str
    affected_transactions: List[str]
    amount: Decimal
    detected_at: datetime
    resolution_status: str = "pending"


@dataclass(frozen=True)
class ReconciliationRecommendation:
    """A suggested follow-up derived from a summary."""
    id: str
    type: RecommendationType
    title: str
    description: str
    impact: Priority
    effort: Priority
    category: str
    suggested_actions: List[str] = field(default_factory=list)
    potential_savings: float = 0.0
    confidence: float = 0.0


@dataclass(frozen=True)
class ReconciliationSummary:
    """Immutable snapshot computed once per completed session."""
    total_bank_transactions: int
    total_ledger_transactions: int
    matched_transactions: int
    unmatched_bank_transactions: int
    unmatched_ledger_transactions: int
    total_bank_amount: Decimal
    total_ledger_amount: Decimal
    matched_amount: Decimal
    unmatched_amount: Decimal
    variance_amount: Decimal
    reconciliation_rate: float
    auto_match_rate: float
    manual_match_rate: float
    outstanding_items: List[OutstandingItem] = field(default_factory=list)
    exceptions: List[ReconciliationException] = field(default_factory=list)
    recommendations: List[ReconciliationRecommendation] = field(default_factory=list)
    generated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class MatchingStats:
    """Statistics collected while running the matching engine."""
    processing_time: float = 0.0
    transactions_processed: int = 0
    matches_found: int = 0
    confidence_distribution: Dict[int, int] = field(default_factory=dict)
    rule_performance: Dict[str, int] = field(default_factory=dict)

    def record(self, match: ReconciliationMatch) -> None:
        self.matches_found += 1
        if match.rule_id:
            self.rule_performance[match.rule_id] = self.rule_performance.get(match.rule_id, 0) + 1
        bucket = min(int(match.confidence_score * 10) * 10, 100)
        self.confidence_distribution[bucket] = self.confidence_distribution.get(bucket, 0) + 1

    def merge(self, other: "MatchingStats") -> None:
        self.transactions_processed += other.transactions_processed
        self.matches_found += other.matches_found
        for bucket, count in other.confidence_distribution.items():
            self.confidence_distribution[bucket] = self.confidence_distribution.get(bucket, 0) + count
        for rule_id, count in other.rule_performance.items():
            self.rule_performance[rule_id] = self.rule_performance.get(rule_id, 0) + count


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.SESSION_STARTED

    # Context
    organization_id: Optional[str] = None
    session_id: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)
    actor: str = "system"

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None


# ===== Analytics =====

@dataclass
class TrendData:
    period: str
    total_sessions: int
    total_transactions: int
    matched_transactions: int
    reconciliation_rate: float
    total_variance: Decimal
    cancelled_sessions: int


@dataclass
class PatternData:
    pattern: str
    frequency: int
    impact: Decimal
    category: str
    suggested_rule: str


@dataclass
class RuleEffectiveness:
    rule_id: str
    rule_name: str
    matches_found: int
    accuracy_rate: float
    false_positive_rate: float
    usage_count: int
    last_used: Optional[datetime]


@dataclass
class ProcessingPerformance:
    average_processing_time: float
    p95_processing_time: float
    total_operations: int
    error_rate: float
    cache_hit_rate: float


@dataclass
class CostSavings:
    manual_hours_saved: float
    cost_per_hour: float
    total_savings: float
    auto_approved_matches: int


@dataclass
class AnalyticsRecommendation:
    type: str
    title: str
    description: str
    impact: int
    effort: int
    priority: int
    implementation_steps: List[str] = field(default_factory=list)


@dataclass
class BankReconciliationAnalytics:
    """Read-only report derived from historical sessions and matches."""
    organization_id: str
    period: str
    reconciliation_trends: List[TrendData] = field(default_factory=list)
    exception_patterns: List[PatternData] = field(default_factory=list)
    rule_effectiveness: List[RuleEffectiveness] = field(default_factory=list)
    processing_performance: Optional[ProcessingPerformance] = None
    cost_savings: Optional[CostSavings] = None
    recommendations: List[AnalyticsRecommendation] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)
