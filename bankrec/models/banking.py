"""Banking entities: accounts, statements, transactions, ledger entries and rules."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import (
    BankAccountType,
    BankTransactionType,
    ReconciliationRuleType,
    StatementProcessingStatus,
)
from .serialization import to_primitive


def _new_id() -> str:
    return str(uuid4())


@dataclass
class BankAccount:
    """
    A bank account under reconciliation.
    Balances are snapshots owned by the external ledger; the engine only reads them.
    """
    organization_id: str
    account_number: str
    account_name: str
    bank_name: str
    id: str = field(default_factory=_new_id)
    account_type: BankAccountType = BankAccountType.CHECKING
    currency: str = "USD"
    bank_code: Optional[str] = None
    swift_code: Optional[str] = None
    iban: Optional[str] = None

    opening_balance: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    available_balance: Decimal = Decimal("0")

    # Link to the general ledger account whose entries are matched
    ledger_account_id: Optional[str] = None

    last_reconciliation_date: Optional[datetime] = None
    last_statement_date: Optional[date] = None
    is_active: bool = True
    auto_reconcile: bool = False
    reconciliation_rules: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class BankTransaction:
    """
    A statement line item.

    Only is_reconciled, matched_transaction_id and confidence_score change after
    import, and only when the orchestrator persists an auto-approved match.
    """
    bank_statement_id: str
    date: date
    description: str
    amount: Decimal
    id: str = field(default_factory=_new_id)
    value_date: Optional[date] = None
    reference: Optional[str] = None
    type: BankTransactionType = BankTransactionType.OTHER
    category: str = "other"
    subcategory: Optional[str] = None
    check_number: Optional[str] = None
    counterparty: Optional[str] = None
    counterparty_account: Optional[str] = None

    # Reconciliation state
    is_reconciled: bool = False
    matched_transaction_id: Optional[str] = None
    confidence_score: Optional[float] = None
    reconciliation_notes: Optional[str] = None

    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class BankStatement:
    """An imported statement covering one period of one account."""
    bank_account_id: str
    statement_number: str
    statement_date: date
    id: str = field(default_factory=_new_id)
    statement_period_start: Optional[date] = None
    statement_period_end: Optional[date] = None

    opening_balance: Decimal = Decimal("0")
    closing_balance: Decimal = Decimal("0")
    total_deposits: Decimal = Decimal("0")
    total_withdrawals: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")
    total_interest: Decimal = Decimal("0")

    transaction_count: int = 0
    statement_hash: str = ""
    imported_by: Optional[str] = None
    imported_at: datetime = field(default_factory=datetime.utcnow)

    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None

    processing_status: StatementProcessingStatus = StatementProcessingStatus.PENDING
    validation_errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class LedgerEntry:
    """A journal entry posted against the ledger account linked to a bank account."""
    organization_id: str
    ledger_account_id: str
    entry_number: str
    entry_date: date
    description: str
    total: Decimal
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)


@dataclass
class MatchingCriteria:
    """
    Criteria and tolerances evaluated by the matching engine.

    counterparty_match, check_number_match, category_match, ml_scoring and
    custom_rules are stored with the rule but not scored.
    """
    amount_match: bool = True
    amount_tolerance: Decimal = Decimal("0")
    date_match: bool = True
    date_tolerance: int = 0
    description_match: bool = False
    description_similarity: float = 0.8
    reference_match: bool = False
    reference_patterns: List[str] = field(default_factory=list)
    counterparty_match: bool = False
    check_number_match: bool = False
    category_match: bool = False
    min_confidence: float = 0.5
    fuzzy_matching: bool = False
    ml_scoring: bool = False
    custom_rules: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconciliationAction:
    """Follow-up action attached to a rule."""
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    conditions: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconciliationRule:
    """A named, prioritized matcher configuration. Higher priority runs first."""
    organization_id: str
    rule_name: str
    criteria: MatchingCriteria
    id: str = field(default_factory=_new_id)
    description: str = ""
    rule_type: ReconciliationRuleType = ReconciliationRuleType.EXACT_MATCH
    actions: List[ReconciliationAction] = field(default_factory=list)
    priority: int = 50
    is_active: bool = True
    auto_approve: bool = False
    confidence_threshold: float = 0.9
    tags: List[str] = field(default_factory=list)

    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    last_used: Optional[datetime] = None
    usage_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)
