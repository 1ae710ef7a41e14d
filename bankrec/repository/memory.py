"""
In-memory repository for tests and local runs.
"""

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..errors import DatabaseError, ErrorCode, NotFoundError
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
from .base import STATEMENT_RESULT_FIELDS, ReconciliationRepository

logger = structlog.get_logger()


def _detached(value):
    return copy.deepcopy(value)


class InMemoryRepository(ReconciliationRepository):
    """
    Dictionary-backed store.

    Every read and write copies the entity so callers never share state with
    the store, the way rows read from a database behave.
    """

    def __init__(self):
        self.accounts: Dict[str, BankAccount] = {}
        self.statements: Dict[str, BankStatement] = {}
        self.transactions: Dict[str, BankTransaction] = {}
        self.ledger_entries: Dict[str, LedgerEntry] = {}
        self.rules: Dict[str, ReconciliationRule] = {}
        self.sessions: Dict[str, ReconciliationSession] = {}
        self.matches: Dict[str, ReconciliationMatch] = {}
        self.summaries: Dict[str, ReconciliationSummary] = {}
        self.insights: Dict[str, List[ReconciliationRecommendation]] = {}
        self.available = True

    # ---- Seeding helpers ----

    def add_ledger_entries(self, entries: Sequence[LedgerEntry]) -> None:
        """Ledger entries are owned by the external ledger; tests seed them here."""
        for entry in entries:
            self.ledger_entries[entry.id] = _detached(entry)

    # ---- Accounts ----

    async def get_account(self, account_id: str) -> Optional[BankAccount]:
        return _detached(self.accounts.get(account_id))

    async def find_account_by_number(
        self, organization_id: str, account_number: str
    ) -> Optional[BankAccount]:
        for account in self.accounts.values():
            if account.organization_id == organization_id and account.account_number == account_number:
                return _detached(account)
        return None

    async def create_account(self, account: BankAccount) -> BankAccount:
        self.accounts[account.id] = _detached(account)
        return _detached(account)

    async def list_accounts(
        self,
        organization_id: str,
        filters: Optional[Dict[str, Any]] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[BankAccount], int]:
        filters = filters or {}
        rows = [a for a in self.accounts.values() if a.organization_id == organization_id]

        if "is_active" in filters:
            rows = [a for a in rows if a.is_active == filters["is_active"]]
        if filters.get("account_type"):
            rows = [a for a in rows if a.account_type == filters["account_type"]]
        if filters.get("currency"):
            rows = [a for a in rows if a.currency == filters["currency"]]
        if filters.get("search"):
            needle = str(filters["search"]).lower()
            rows = [
                a for a in rows
                if needle in a.account_name.lower()
                or needle in a.bank_name.lower()
                or needle in a.account_number.lower()
            ]

        rows.sort(key=lambda a: a.created_at, reverse=True)
        return _detached(rows[offset:offset + limit]), len(rows)

    # ---- Statements ----

    async def find_statement_by_number(
        self, account_id: str, statement_number: str
    ) -> Optional[BankStatement]:
        for statement in self.statements.values():
            if statement.bank_account_id == account_id and statement.statement_number == statement_number:
                return _detached(statement)
        return None

    async def get_statement(self, statement_id: str) -> Optional[BankStatement]:
        return _detached(self.statements.get(statement_id))

    async def create_statement(self, statement: BankStatement) -> BankStatement:
        self._check_available()
        self.statements[statement.id] = _detached(statement)
        return _detached(statement)

    async def update_statement(self, statement_id: str, **fields: Any) -> BankStatement:
        statement = self.statements.get(statement_id)
        if statement is None:
            raise NotFoundError(f"Statement {statement_id} not found", code=ErrorCode.STATEMENT_NOT_FOUND)

        illegal = set(fields) - STATEMENT_RESULT_FIELDS
        if illegal:
            raise DatabaseError(
                "Statement fields cannot be changed after import",
                details=sorted(illegal),
            )

        for name, value in fields.items():
            setattr(statement, name, _detached(value))
        statement.updated_at = datetime.utcnow()
        return _detached(statement)

    # ---- Transactions ----

    async def insert_transaction(self, transaction: BankTransaction) -> BankTransaction:
        self._check_available()
        self.transactions[transaction.id] = _detached(transaction)
        return _detached(transaction)

    async def list_transactions_by_statement(
        self, statement_id: str, unreconciled_only: bool = False
    ) -> List[BankTransaction]:
        rows = [t for t in self.transactions.values() if t.bank_statement_id == statement_id]
        if unreconciled_only:
            rows = [t for t in rows if not t.is_reconciled]
        return _detached(rows)

    async def update_transaction_reconciled(
        self,
        transaction_id: str,
        matched_transaction_id: str,
        confidence_score: float,
    ) -> BankTransaction:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                code=ErrorCode.TRANSACTION_NOT_FOUND,
            )
        transaction.is_reconciled = True
        transaction.matched_transaction_id = matched_transaction_id
        transaction.confidence_score = confidence_score
        transaction.updated_at = datetime.utcnow()
        return _detached(transaction)

    # ---- Ledger ----

    async def list_ledger_entries_for_account(self, ledger_account_id: str) -> List[LedgerEntry]:
        return _detached([
            e for e in self.ledger_entries.values() if e.ledger_account_id == ledger_account_id
        ])

    # ---- Rules ----

    async def list_active_rules(self, organization_id: str) -> List[ReconciliationRule]:
        rules = [
            r for r in self.rules.values()
            if r.organization_id == organization_id and r.is_active
        ]
        # Stable sort keeps creation order among equal priorities
        rules.sort(key=lambda r: r.priority, reverse=True)
        return _detached(rules)

    async def list_rules(self, organization_id: str) -> List[ReconciliationRule]:
        return _detached([r for r in self.rules.values() if r.organization_id == organization_id])

    async def create_rule(self, rule: ReconciliationRule) -> ReconciliationRule:
        self._check_available()
        self.rules[rule.id] = _detached(rule)
        return _detached(rule)

    async def record_rule_usage(self, rule_id: str, matches: int, used_at: datetime) -> None:
        rule = self.rules.get(rule_id)
        if rule is None:
            return
        rule.usage_count += matches
        rule.last_used = used_at

    # ---- Sessions and matches ----

    async def create_session(self, session: ReconciliationSession) -> ReconciliationSession:
        self._check_available()
        self.sessions[session.id] = _detached(session)
        return _detached(session)

    async def update_session(self, session: ReconciliationSession) -> ReconciliationSession:
        if session.id not in self.sessions:
            raise NotFoundError(f"Session {session.id} not found", code=ErrorCode.SESSION_NOT_FOUND)
        session.updated_at = datetime.utcnow()
        self.sessions[session.id] = _detached(session)
        return _detached(session)

    async def get_session(self, session_id: str) -> Optional[ReconciliationSession]:
        return _detached(self.sessions.get(session_id))

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
        rows = [s for s in self.sessions.values() if s.organization_id == organization_id]
        if account_ids:
            wanted = set(account_ids)
            rows = [s for s in rows if s.bank_account_id in wanted]
        if status is not None:
            rows = [s for s in rows if s.status == status]
        if started_after is not None:
            rows = [s for s in rows if s.started_at >= started_after]
        if started_before is not None:
            rows = [s for s in rows if s.started_at <= started_before]
        rows.sort(key=lambda s: s.started_at, reverse=True)
        page = rows[offset:] if limit is None else rows[offset:offset + limit]
        return _detached(page), len(rows)

    async def insert_match(self, match: ReconciliationMatch) -> ReconciliationMatch:
        self._check_available()
        self.matches[match.id] = _detached(match)
        return _detached(match)

    async def get_match(self, match_id: str) -> Optional[ReconciliationMatch]:
        return _detached(self.matches.get(match_id))

    async def list_matches(
        self,
        session_ids: Optional[Sequence[str]] = None,
        status: Optional[ReconciliationMatchStatus] = None,
    ) -> List[ReconciliationMatch]:
        rows = list(self.matches.values())
        if session_ids is not None:
            wanted = set(session_ids)
            rows = [m for m in rows if m.session_id in wanted]
        if status is not None:
            rows = [m for m in rows if m.status == status]
        rows.sort(key=lambda m: m.confidence_score, reverse=True)
        return _detached(rows)

    async def update_match_status(
        self,
        match_id: str,
        status: ReconciliationMatchStatus,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ReconciliationMatch:
        match = self.matches.get(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found", code=ErrorCode.MATCH_NOT_FOUND)
        now = datetime.utcnow()
        match.status = status
        match.reviewed_by = reviewed_by
        match.reviewed_at = now
        if notes is not None:
            match.notes = notes
        match.updated_at = now
        return _detached(match)

    # ---- Summaries and insights ----

    async def insert_summary(self, session_id: str, summary: ReconciliationSummary) -> None:
        self.summaries[session_id] = summary

    async def list_summaries(self, session_ids: Sequence[str]) -> Dict[str, ReconciliationSummary]:
        return {sid: self.summaries[sid] for sid in session_ids if sid in self.summaries}

    async def insert_insights(
        self, session_id: str, insights: List[ReconciliationRecommendation]
    ) -> None:
        self.insights.setdefault(session_id, []).extend(insights)

    # ---- Health ----

    async def ping(self) -> bool:
        return self.available

    def _check_available(self) -> None:
        if not self.available:
            raise DatabaseError("Repository unavailable")
