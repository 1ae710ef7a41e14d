"""Enumerations for the bank reconciliation engine."""

from enum import Enum


class BankAccountType(str, Enum):
    """Kind of bank account."""
    CHECKING = "checking"
    SAVINGS = "savings"
    MONEY_MARKET = "money_market"
    CREDIT_CARD = "credit_card"
    LINE_OF_CREDIT = "line_of_credit"
    INVESTMENT = "investment"
    OTHER = "other"


class BankTransactionType(str, Enum):
    """Type of a bank statement line."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    CHECK = "check"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    ACH = "ach"
    WIRE = "wire"
    FEE = "fee"
    INTEREST = "interest"
    DIVIDEND = "dividend"
    OTHER = "other"


class StatementProcessingStatus(str, Enum):
    """
    Processing status of an imported statement.

    PENDING -> PROCESSING -> COMPLETED | FAILED | CANCELLED
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReconciliationRuleType(str, Enum):
    """Kind of matching rule."""
    EXACT_MATCH = "exact_match"
    FUZZY_MATCH = "fuzzy_match"
    PATTERN_MATCH = "pattern_match"
    ML_MATCH = "ml_match"
    CUSTOM = "custom"


class ReconciliationMatchType(str, Enum):
    """How a match was produced."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    PATTERN = "pattern"
    ML = "ml"
    MANUAL = "manual"
    SPLIT = "split"
    MERGED = "merged"


class ReconciliationMatchStatus(str, Enum):
    """
    Approval status of a match.

    AUTO_APPROVED: rule and score cleared the auto-approval thresholds
    PENDING: waiting for a reviewer
    REVIEW_REQUIRED: flagged for closer review
    APPROVED / REJECTED: final reviewer decisions
    """
    PENDING = "pending"
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVIEW_REQUIRED = "review_required"


class ReconciliationSessionType(str, Enum):
    """Cadence of a reconciliation session."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    CUSTOM = "custom"


class ReconciliationSessionStatus(str, Enum):
    """
    Session lifecycle.

    DRAFT -> IN_PROGRESS -> COMPLETED | REVIEW_REQUIRED | CANCELLED
    """
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    REVIEW_REQUIRED = "review_required"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReconciliationExceptionType(str, Enum):
    """Anomaly detected during a reconciliation run."""
    DUPLICATE_TRANSACTION = "duplicate_transaction"
    MISSING_TRANSACTION = "missing_transaction"
    AMOUNT_MISMATCH = "amount_mismatch"
    DATE_MISMATCH = "date_mismatch"
    UNMATCHED_TRANSACTION = "unmatched_transaction"
    SYSTEM_ERROR = "system_error"
    DATA_QUALITY = "data_quality"


class OutstandingItemType(str, Enum):
    """Side of an unmatched item."""
    BANK_ONLY = "bank_only"
    LEDGER_ONLY = "ledger_only"
    VARIANCE = "variance"


class Priority(str, Enum):
    """Priority / severity scale."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendationType(str, Enum):
    """Kind of follow-up suggested after a run."""
    RULE_CREATION = "rule_creation"
    RULE_MODIFICATION = "rule_modification"
    PROCESS_IMPROVEMENT = "process_improvement"
    DATA_QUALITY = "data_quality"


class AuditAction(str, Enum):
    """Type of audit action."""
    STATEMENT_IMPORTED = "statement_imported"
    DUPLICATE_STATEMENT_SKIPPED = "duplicate_statement_skipped"
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_CANCELLED = "session_cancelled"
    MATCH_CREATED = "match_created"
    MATCH_AUTO_APPROVED = "match_auto_approved"
    MATCH_STATUS_UPDATED = "match_status_updated"
    RULE_CREATED = "rule_created"
    ACCOUNT_CREATED = "account_created"
