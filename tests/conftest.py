"""
Shared fixtures for the bank reconciliation tests.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from bankrec.config import Settings
from bankrec.models import (
    BankAccount,
    BankStatement,
    BankTransaction,
    LedgerEntry,
    MatchingCriteria,
    ReconciliationRule,
    ReconciliationRuleType,
    UserContext,
)
from bankrec.repository import InMemoryRepository
from bankrec.service import BankReconciliationService

ORG_ID = "org-1"
LEDGER_ACCOUNT_ID = "ledger-cash"

ALL_PERMISSIONS = frozenset({
    "bank_reconciliation.read",
    "bank_reconciliation.write",
    "bank_reconciliation.admin",
})


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def user():
    return UserContext(user_id="user-1", organization_id=ORG_ID, permissions=ALL_PERMISSIONS)


@pytest.fixture
def reader():
    return UserContext(
        user_id="reader-1",
        organization_id=ORG_ID,
        permissions=frozenset({"bank_reconciliation.view"}),
    )


@pytest.fixture
def outsider():
    return UserContext(user_id="user-2", organization_id="org-2", permissions=ALL_PERMISSIONS)


@pytest.fixture
def service(repository, settings):
    return BankReconciliationService(repository, settings=settings)


@pytest.fixture
def account(repository):
    """A checking account linked to a ledger account, stored in the repository."""
    acct = BankAccount(
        organization_id=ORG_ID,
        account_number="000123456",
        account_name="Operating",
        bank_name="First Bank",
        ledger_account_id=LEDGER_ACCOUNT_ID,
    )
    repository.accounts[acct.id] = acct
    return acct


@pytest.fixture
def make_rule():
    """Factory for rules with amount/date criteria by default."""
    def factory(**overrides):
        criteria = overrides.pop("criteria", None) or MatchingCriteria(
            amount_match=True,
            amount_tolerance=Decimal("0"),
            date_match=True,
            date_tolerance=0,
            min_confidence=0.5,
        )
        fields = dict(
            organization_id=ORG_ID,
            rule_name="Exact amount and date",
            criteria=criteria,
            rule_type=ReconciliationRuleType.EXACT_MATCH,
            priority=50,
            auto_approve=False,
            confidence_threshold=0.9,
        )
        fields.update(overrides)
        return ReconciliationRule(**fields)
    return factory


@pytest.fixture
def make_bank_tx():
    def factory(amount, on=date(2024, 1, 10), description="Customer payment", **overrides):
        return BankTransaction(
            bank_statement_id=overrides.pop("bank_statement_id", "stmt-1"),
            date=on,
            description=description,
            amount=Decimal(str(amount)),
            **overrides,
        )
    return factory


@pytest.fixture
def make_ledger_entry():
    counter = {"n": 0}

    def factory(total, on=date(2024, 1, 10), description="Customer payment", **overrides):
        counter["n"] += 1
        fields = dict(
            organization_id=ORG_ID,
            ledger_account_id=LEDGER_ACCOUNT_ID,
            entry_number=f"JE-{counter['n']:04d}",
            entry_date=on,
            description=description,
            total=Decimal(str(total)),
        )
        fields.update(overrides)
        return LedgerEntry(**fields)
    return factory


@pytest.fixture
def seeded_statement(repository, account, make_ledger_entry):
    """
    A statement with four lines, three of which have an exact ledger twin.

    Returns (statement, bank_transactions, ledger_entries).
    """
    statement = BankStatement(
        bank_account_id=account.id,
        statement_number="2024-01",
        statement_date=date(2024, 1, 31),
        statement_period_start=date(2024, 1, 1),
        statement_period_end=date(2024, 1, 31),
    )
    repository.statements[statement.id] = statement

    start = date(2024, 1, 5)
    lines = [
        BankTransaction(
            bank_statement_id=statement.id,
            date=start + timedelta(days=i),
            description=f"Invoice {i} payment",
            amount=Decimal(amount),
        )
        for i, amount in enumerate(["150.00", "275.50", "980.25", "42.00"])
    ]
    for tx in lines:
        repository.transactions[tx.id] = tx

    # Ledger totals carry the opposite sign; the last bank line has no twin
    entries = [
        make_ledger_entry(f"-{tx.amount}", on=tx.date, description=tx.description)
        for tx in lines[:3]
    ]
    repository.add_ledger_entries(entries)
    return statement, lines, entries


def statement_payload(number="2024-01", rows=None, **overrides):
    """Statement dictionary as accepted by the import operations."""
    payload = {
        "statement_number": number,
        "statement_date": "2024-01-31",
        "statement_period_start": "2024-01-01",
        "statement_period_end": "2024-01-31",
        "transactions": rows if rows is not None else [
            {"date": "2024-01-05", "description": "Invoice 1 payment", "amount": "150.00"},
            {"date": "2024-01-06", "description": "Monthly service fee", "amount": "-12.00"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def statement_data():
    return statement_payload
