"""
Storage contract used by the import pipeline, orchestrator and service.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models import (
    BankAccount,
    BankStatement,
    BankTransaction,
    LedgerEntry,
    ReconciliationMatch,
    ReconciliationMatchStatus,
    ReconciliationRecommendation,
    ReconciliationRule,
    ReconciliationSession,
    ReconciliationSessionStatus,
    ReconciliationSummary,
)

# Statement fields that may change after the shell row is created
STATEMENT_RESULT_FIELDS = frozenset({
    "processing_status",
    "transaction_count",
    "validation_errors",
    "metadata",
})


class ReconciliationRepository(ABC):
    """
    Async persistence boundary.

    Implementations raise DatabaseError for storage faults. Reads return
    detached copies; callers persist changes through the update methods.
    """

    # ---- Accounts ----

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        ...

    @abstractmethod
    async def find_account_by_number(
        self, organization_id: str, account_number: str
    ) -> Optional[BankAccount]:
        ...

    @abstractmethod
    async def create_account(self, account: BankAccount) -> BankAccount:
        ...

    @abstractmethod
    async def list_accounts(
        self,
        organization_id: str,
        filters: Optional[Dict[str, Any]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[BankAccount], int]:
        """Page of accounts and the total number matching the filters."""

    # ---- Statements ----

    @abstractmethod
    async def find_statement_by_number(
        self, account_id: str, statement_number: str
    ) -> Optional[BankStatement]:
        ...

    @abstractmethod
    async def get_statement(self, statement_id: str) -> Optional[BankStatement]:
        ...

    @abstractmethod
    async def create_statement(self, statement: BankStatement) -> BankStatement:
        ...

    @abstractmethod
    async def update_statement(self, statement_id: str, **fields: Any) -> BankStatement:
        """Attach processing results. Only STATEMENT_RESULT_FIELDS may change."""

    # ---- Transactions ----

    @abstractmethod
    async def insert_transaction(self, transaction: BankTransaction) -> BankTransaction:
        ...

    @abstractmethod
    async def list_transactions_by_statement(
        self, statement_id: str, unreconciled_only: bool = False
    ) -> List[BankTransaction]:
        ...

    @abstractmethod
    async def update_transaction_reconciled(
        self,
        transaction_id: str,
        matched_transaction_id: str,
        confidence_score: float,
    ) -> BankTransaction:
        ...

    # ---- Ledger ----

    @abstractmethod
    async def list_ledger_entries_for_account(self, ledger_account_id: str) -> List[LedgerEntry]:
        ...

    # ---- Rules ----

    @abstractmethod
    async def list_active_rules(self, organization_id: str) -> List[ReconciliationRule]:
        """Active rules ordered by priority, highest first."""

    @abstractmethod
    async def list_rules(self, organization_id: str) -> List[ReconciliationRule]:
        ...

    @abstractmethod
    async def create_rule(self, rule: ReconciliationRule) -> ReconciliationRule:
        ...

    @abstractmethod
    async def record_rule_usage(self, rule_id: str, matches: int, used_at: datetime) -> None:
        ...

    # ---- Sessions and matches ----

    @abstractmethod
    async def create_session(self, session: ReconciliationSession) -> ReconciliationSession:
        ...

    @abstractmethod
    async def update_session(self, session: ReconciliationSession) -> ReconciliationSession:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ReconciliationSession]:
        ...

    @abstractmethod
    async def list_sessions(
        self,
        organization_id: str,
        account_ids: Optional[Sequence[str]] = None,
        status: Optional[ReconciliationSessionStatus] = None,
        started_after: Optional[datetime] = None,
        started_before: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[ReconciliationSession], int]:
        """Sessions newest first, and the total count."""

    @abstractmethod
    async def insert_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        ...

    @abstractmethod
    async def get_match(self, match_id: str) -> Optional[ReconciliationMatch]:
        ...

    @abstractmethod
    async def list_matches(
        self,
        session_ids: Optional[Sequence[str]] = None,
        status: Optional[ReconciliationMatchStatus] = None,
    ) -> List[ReconciliationMatch]:
        ...

    @abstractmethod
    async def update_match_status(
        self,
        match_id: str,
        status: ReconciliationMatchStatus,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReconciliationMatch:
        ...

    # ---- Summaries and insights ----

    @abstractmethod
    async def insert_summary(self, session_id: str, summary: ReconciliationSummary) -> None:
        """Store the summary for a session, replacing any earlier one."""

    @abstractmethod
    async def list_summaries(self, session_ids: Sequence[str]) -> Dict[str, ReconciliationSummary]:
        ...

    @abstractmethod
    async def insert_insights(
        self, session_id: str, insights: List[ReconciliationRecommendation]
    ) -> None:
        ...

    # ---- Health ----

    @abstractmethod
    async def ping(self) -> bool:
        ...
