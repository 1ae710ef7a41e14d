"""
Input validation schemas.

Inputs arriving at the service boundary are validated with Pydantic before any
repository call; validated inputs are converted into the dataclass entities.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ValidationFailedError
from .banking import (
    BankAccount,
    BankStatement,
    BankTransaction,
    MatchingCriteria,
    ReconciliationAction,
    ReconciliationRule,
)
from .enums import (
    BankAccountType,
    BankTransactionType,
    ReconciliationRuleType,
    StatementProcessingStatus,
)

FileFormat = Literal["csv", "ofx", "qif", "xlsx", "json", "xml"]


def validation_messages(exc: ValidationError) -> List[str]:
    """Flatten a Pydantic error into one readable message per issue."""
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{location}: {err['msg']}" if location else err["msg"])
    return messages


class BankAccountInput(BaseModel):
    account_number: str = Field(min_length=1)
    account_name: str = Field(min_length=1)
    bank_name: str = Field(min_length=1)
    bank_code: Optional[str] = None
    swift_code: Optional[str] = None
    iban: Optional[str] = None
    account_type: BankAccountType = BankAccountType.CHECKING
    currency: str = Field(min_length=3, max_length=3)
    opening_balance: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    available_balance: Decimal = Decimal("0")
    ledger_account_id: Optional[str] = None
    is_active: bool = True
    auto_reconcile: bool = False
    reconciliation_rules: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_account(self, organization_id: str, user_id: str) -> BankAccount:
        return BankAccount(
            organization_id=organization_id,
            created_by=user_id,
            updated_by=user_id,
            **self.model_dump(),
        )


class BankTransactionInput(BaseModel):
    date: date
    value_date: Optional[date] = None
    description: str = Field(min_length=1)
    reference: Optional[str] = None
    amount: Decimal
    type: BankTransactionType = BankTransactionType.OTHER
    category: str = "other"
    subcategory: Optional[str] = None
    check_number: Optional[str] = None
    counterparty: Optional[str] = None
    counterparty_account: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_transaction(self, statement_id: str) -> BankTransaction:
        data = self.model_dump()
        if data["value_date"] is None:
            data["value_date"] = data["date"]
        return BankTransaction(bank_statement_id=statement_id, **data)


class StatementInput(BaseModel):
    statement_number: str = Field(min_length=1)
    statement_date: date
    statement_period_start: Optional[date] = None
    statement_period_end: Optional[date] = None
    opening_balance: Decimal = Decimal("0")
    closing_balance: Decimal = Decimal("0")
    total_deposits: Decimal = Decimal("0")
    total_withdrawals: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")
    total_interest: Decimal = Decimal("0")
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    # Rows are validated one by one during batch processing
    transactions: List[Dict[str, Any]] = Field(default_factory=list)

    def to_statement(self, account_id: str, user_id: str, statement_hash: str) -> BankStatement:
        data = self.model_dump(exclude={"transactions"})
        return BankStatement(
            bank_account_id=account_id,
            statement_hash=statement_hash,
            imported_by=user_id,
            processing_status=StatementProcessingStatus.PROCESSING,
            **data,
        )


class ValidationRuleInput(BaseModel):
    field: str
    type: Literal["required", "format", "range", "custom"]
    parameters: Dict[str, Any] = Field(default_factory=dict)
    error_message: str = ""


class StatementImportOptions(BaseModel):
    file_format: FileFormat = "json"
    encoding: str = "utf-8"
    delimiter: Optional[str] = None
    header_row: Optional[int] = Field(default=None, ge=0)
    date_format: Optional[str] = None
    amount_format: Optional[str] = None
    column_mapping: Optional[Dict[str, str]] = None
    validation_rules: Optional[List[ValidationRuleInput]] = None
    auto_categorize: bool = True
    duplicate_detection: bool = True
    skip_duplicates: bool = True


class MatchingCriteriaInput(BaseModel):
    amount_match: bool = True
    amount_tolerance: Decimal = Field(default=Decimal("0"), ge=0)
    date_match: bool = True
    date_tolerance: int = Field(default=0, ge=0)
    description_match: bool = False
    description_similarity: float = Field(default=0.8, ge=0, le=1)
    reference_match: bool = False
    reference_patterns: List[str] = Field(default_factory=list)
    counterparty_match: bool = False
    check_number_match: bool = False
    category_match: bool = False
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    fuzzy_matching: bool = False
    ml_scoring: bool = False
    custom_rules: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationActionInput(BaseModel):
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    conditions: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationRuleInput(BaseModel):
    rule_name: str = Field(min_length=1)
    description: str = ""
    rule_type: ReconciliationRuleType = ReconciliationRuleType.EXACT_MATCH
    criteria: MatchingCriteriaInput = Field(default_factory=MatchingCriteriaInput)
    actions: List[ReconciliationActionInput] = Field(default_factory=list)
    priority: int = Field(default=50, ge=0, le=100)
    is_active: bool = True
    auto_approve: bool = False
    confidence_threshold: float = Field(default=0.9, ge=0, le=1)
    tags: List[str] = Field(default_factory=list)

    def to_rule(self, organization_id: str, user_id: str) -> ReconciliationRule:
        return ReconciliationRule(
            organization_id=organization_id,
            rule_name=self.rule_name,
            description=self.description,
            rule_type=self.rule_type,
            criteria=MatchingCriteria(**self.criteria.model_dump()),
            actions=[ReconciliationAction(**a.model_dump()) for a in self.actions],
            priority=self.priority,
            is_active=self.is_active,
            auto_approve=self.auto_approve,
            confidence_threshold=self.confidence_threshold,
            tags=list(self.tags),
            created_by=user_id,
        )


class ReconciliationOptions(BaseModel):
    """
    Options for a reconciliation run.

    confidence_threshold is a second gate on top of each rule's own thresholds.
    date_tolerance and amount_tolerance are range-checked but matching uses the
    tolerances configured on each rule.
    """
    model_config = ConfigDict(extra="forbid")

    auto_match: bool = True
    confidence_threshold: float = Field(default=0.8, ge=0, le=1)
    date_tolerance: int = Field(default=3, ge=0)
    amount_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)
    enable_ml_matching: bool = False
    require_manual_review: bool = False
    batch_size: int = Field(default=100, ge=1, le=10000)
    parallel_processing: bool = False
    generate_insights: bool = False


def parse_input(model, data, label: str):
    """Validate data with a Pydantic model, raising ValidationFailedError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise ValidationFailedError(f"Invalid {label}", details=validation_messages(e))
