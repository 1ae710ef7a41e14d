"""
Statement import pipeline.

Validates a statement, skips or rejects duplicates, persists the statement shell
and then its transaction lines in batches. Bad lines are collected as errors
without stopping the import.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..errors import DuplicateStatementError
from ..models import BankStatement, BankTransaction, StatementProcessingStatus, UserContext
from ..models.schemas import (
    BankTransactionInput,
    StatementImportOptions,
    StatementInput,
    parse_input,
    validation_messages,
)
from ..repository import ReconciliationRepository
from ..utils.deadline import check_deadline
from .categorizer import categorize
from .validator import BalanceValidator

logger = structlog.get_logger()


@dataclass
class ImportResult:
    """Outcome of importing one statement."""
    statement: BankStatement
    transactions: List[BankTransaction] = field(default_factory=list)
    validation_errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duplicate: bool = False

    @property
    def records_processed(self) -> int:
        return len(self.transactions)


def compute_statement_hash(statement: StatementInput) -> str:
    """Integrity hash over the statement identity, balances and line count."""
    payload = "|".join([
        statement.statement_number,
        statement.statement_date.isoformat(),
        str(statement.opening_balance),
        str(statement.closing_balance),
        str(len(statement.transactions)),
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StatementImportPipeline:
    """
    Imports bank statements for one repository.

    Stages:
    1. Validate the statement and import options
    2. Duplicate detection by (account, statement number)
    3. Persist the statement shell in processing state
    4. Validate, categorize and insert lines batch by batch
    5. Attach processing results to the statement
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        settings: Optional[Settings] = None,
        validator: Optional[BalanceValidator] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.validator = validator or BalanceValidator()

    async def import_statement(
        self,
        account_id: str,
        statement_data: Union[StatementInput, Dict[str, Any]],
        options: Union[StatementImportOptions, Dict[str, Any], None],
        user: UserContext,
        deadline: Optional[float] = None,
    ) -> ImportResult:
        statement_input = parse_input(StatementInput, statement_data, "statement")
        import_options = parse_input(StatementImportOptions, options, "import options")

        if import_options.duplicate_detection:
            existing = await self.repository.find_statement_by_number(
                account_id, statement_input.statement_number
            )
            if existing is not None:
                if not import_options.skip_duplicates:
                    raise DuplicateStatementError(
                        "Statement already exists",
                        details={"statement_id": existing.id},
                    )
                logger.info(
                    "Duplicate statement skipped",
                    account_id=account_id,
                    statement_number=statement_input.statement_number,
                    statement_id=existing.id,
                )
                return ImportResult(
                    statement=existing,
                    warnings=["Duplicate statement skipped"],
                    duplicate=True,
                )

        statement_hash = compute_statement_hash(statement_input)
        shell = statement_input.to_statement(account_id, user.user_id, statement_hash)
        statement = await self.repository.create_statement(shell)

        logger.info(
            "Importing statement",
            statement_id=statement.id,
            statement_number=statement.statement_number,
            rows=len(statement_input.transactions),
        )

        try:
            transactions, row_errors = await self._import_lines(
                statement, statement_input.transactions, import_options, deadline
            )

            warnings = []
            metadata = dict(statement.metadata)
            balance = self.validator.validate(statement, transactions)
            if balance is not None:
                warnings.extend(balance.warnings)
                metadata["balance_check"] = {
                    "is_valid": balance.is_valid,
                    "computed_closing_balance": str(balance.computed_closing_balance),
                    "difference": str(balance.difference),
                }

            statement = await self.repository.update_statement(
                statement.id,
                transaction_count=len(transactions),
                validation_errors=row_errors,
                processing_status=StatementProcessingStatus.COMPLETED,
                metadata=metadata,
            )
        except Exception as e:
            logger.error("Statement import failed", statement_id=statement.id, error=str(e))
            await self._mark_failed(statement.id, str(e))
            raise

        logger.info(
            "Statement imported",
            statement_id=statement.id,
            imported=len(transactions),
            errors=len(row_errors),
        )

        return ImportResult(
            statement=statement,
            transactions=transactions,
            validation_errors=row_errors,
            warnings=warnings,
        )

    async def _import_lines(
        self,
        statement: BankStatement,
        rows: List[Dict[str, Any]],
        options: StatementImportOptions,
        deadline: Optional[float],
    ):
        transactions: List[BankTransaction] = []
        errors: List[str] = []
        batch_size = self.settings.import_batch_size

        for start in range(0, len(rows), batch_size):
            check_deadline(deadline, "Statement import")
            batch = rows[start:start + batch_size]

            for offset, row in enumerate(batch):
                row_number = start + offset + 1
                try:
                    line = BankTransactionInput.model_validate(row)
                except ValidationError as e:
                    errors.append(
                        f"Row {row_number}: transaction validation failed: "
                        + "; ".join(validation_messages(e))
                    )
                    continue

                try:
                    transaction = line.to_transaction(statement.id)
                    if options.auto_categorize:
                        transaction.category = categorize(transaction.description)
                    transactions.append(await self.repository.insert_transaction(transaction))
                except Exception as e:
                    errors.append(f"Row {row_number}: transaction processing error: {e}")

            logger.debug(
                "Import batch processed",
                statement_id=statement.id,
                batch_start=start,
                batch_rows=len(batch),
            )

        return transactions, errors

    async def _mark_failed(self, statement_id: str, reason: str) -> None:
        try:
            await self.repository.update_statement(
                statement_id,
                processing_status=StatementProcessingStatus.FAILED,
                validation_errors=[reason],
            )
        except Exception as e:
            logger.error("Could not mark statement failed", statement_id=statement_id, error=str(e))
