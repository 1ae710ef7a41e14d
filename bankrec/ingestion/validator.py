"""
Balance validator for imported statements.

The balance equation:
    closing_balance = opening_balance + sum(transaction amounts)

A mismatch does not stop an import; it indicates missing rows, rows rejected by
validation, or a statement whose balances were captured incorrectly.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog

from ..models import BankStatement, BankTransaction

logger = structlog.get_logger()


@dataclass
class BalanceValidationResult:
    """Result of checking a statement against its transactions."""
    is_valid: bool
    opening_balance: Decimal
    closing_balance: Decimal
    computed_closing_balance: Decimal
    difference: Decimal
    total_credits: Decimal = Decimal("0")
    total_debits: Decimal = Decimal("0")
    warnings: List[str] = field(default_factory=list)


class BalanceValidator:
    """
    Validates a statement's balances against its transaction lines.

    Only statements that declare balances are checked; when both balances are
    zero and there are transactions the statement is treated as not carrying
    balances and the check is skipped.
    """

    def __init__(self, tolerance: Decimal = Decimal("0.01")):
        """
        Initialize validator.

        Args:
            tolerance: Absolute difference accepted between declared and computed closing balance
        """
        self.tolerance = tolerance

    def validate(
        self,
        statement: BankStatement,
        transactions: Sequence[BankTransaction],
    ) -> Optional[BalanceValidationResult]:
        """
        Check opening + sum(amounts) against the closing balance.

        Returns:
            BalanceValidationResult, or None when the statement carries no balances
        """
        opening = statement.opening_balance
        closing = statement.closing_balance
        if opening == 0 and closing == 0 and transactions:
            return None

        credits = sum((t.amount for t in transactions if t.amount > 0), Decimal("0"))
        debits = sum((t.amount for t in transactions if t.amount < 0), Decimal("0"))
        computed = opening + credits + debits
        difference = closing - computed
        is_valid = abs(difference) <= self.tolerance

        result = BalanceValidationResult(
            is_valid=is_valid,
            opening_balance=opening,
            closing_balance=closing,
            computed_closing_balance=computed,
            difference=difference,
            total_credits=credits,
            total_debits=debits,
        )

        if not is_valid:
            message = (
                f"Closing balance {closing} does not match opening balance plus "
                f"transactions ({computed}); difference {difference}"
            )
            result.warnings.append(message)
            logger.warning(
                "Statement balance mismatch",
                statement_id=statement.id,
                statement_number=statement.statement_number,
                difference=str(difference),
            )

        return result
