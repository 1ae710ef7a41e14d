"""
Reconciliation Orchestrator - session lifecycle coordinator.

Runs one reconciliation session for a (bank account, statement) pair:
1. Session creation (draft -> in_progress)
2. Snapshot loading (unreconciled bank lines, ledger entries, active rules)
3. Matching (worker threads, optionally in parallel batches)
4. Match persistence and reconciliation of auto-approved lines
5. Summary, counters, insights and rule usage
6. Final status, written only after everything above succeeded
7. Cache invalidation

Any failure after the session exists cancels it and re-raises.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from ..config import Settings, get_settings
from ..errors import ErrorCode, NotFoundError, ProcessingError, ValidationFailedError
from ..models import (
    AuditAction,
    BankAccount,
    BankTransaction,
    LedgerEntry,
    MatchingStats,
    ReconciliationMatch,
    ReconciliationMatchStatus,
    ReconciliationRule,
    ReconciliationSession,
    ReconciliationSessionStatus,
    ReconciliationSessionType,
    ReconciliationSummary,
    UserContext,
)
from ..models.schemas import ReconciliationOptions, parse_input
from ..repository import ReconciliationRepository
from ..utils.audit_logger import AuditLogger
from ..utils.cache import ReconciliationCache
from ..utils.deadline import check_deadline
from .matching import MatchingEngine, MatchingResult
from .summary import compute_summary

logger = structlog.get_logger()

SESSION_TRANSITIONS = {
    ReconciliationSessionStatus.DRAFT: {
        ReconciliationSessionStatus.IN_PROGRESS,
        ReconciliationSessionStatus.CANCELLED,
    },
    ReconciliationSessionStatus.IN_PROGRESS: {
        ReconciliationSessionStatus.COMPLETED,
        ReconciliationSessionStatus.REVIEW_REQUIRED,
        ReconciliationSessionStatus.CANCELLED,
    },
    ReconciliationSessionStatus.REVIEW_REQUIRED: {
        ReconciliationSessionStatus.COMPLETED,
        ReconciliationSessionStatus.CANCELLED,
    },
    ReconciliationSessionStatus.COMPLETED: set(),
    ReconciliationSessionStatus.CANCELLED: set(),
}

MATCH_TRANSITIONS = {
    ReconciliationMatchStatus.PENDING: {
        ReconciliationMatchStatus.APPROVED,
        ReconciliationMatchStatus.REJECTED,
        ReconciliationMatchStatus.REVIEW_REQUIRED,
    },
    ReconciliationMatchStatus.REVIEW_REQUIRED: {
        ReconciliationMatchStatus.APPROVED,
        ReconciliationMatchStatus.REJECTED,
    },
    ReconciliationMatchStatus.AUTO_APPROVED: {
        ReconciliationMatchStatus.REVIEW_REQUIRED,
        ReconciliationMatchStatus.REJECTED,
    },
    ReconciliationMatchStatus.APPROVED: set(),
    ReconciliationMatchStatus.REJECTED: set(),
}


def transition_session(
    session: ReconciliationSession,
    new_status: ReconciliationSessionStatus,
) -> None:
    """Move a session to new_status, raising ProcessingError for illegal moves."""
    if new_status not in SESSION_TRANSITIONS[session.status]:
        raise ProcessingError(
            f"Cannot move session from {session.status.value} to {new_status.value}",
            details={"session_id": session.id},
        )
    session.status = new_status


def check_match_transition(
    current: ReconciliationMatchStatus,
    new_status: ReconciliationMatchStatus,
) -> None:
    """Reviewer decisions follow MATCH_TRANSITIONS; approved and rejected are final."""
    if new_status not in MATCH_TRANSITIONS[current]:
        raise ValidationFailedError(
            f"Cannot change match status from {current.value} to {new_status.value}",
        )


@dataclass
class ReconciliationOutcome:
    """Result of a reconciliation run."""
    session: ReconciliationSession
    summary: ReconciliationSummary
    stats: MatchingStats
    matches: List[ReconciliationMatch] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.session.to_dict()
        data["reconciliation_summary"] = self.summary.to_dict()
        return data


class ReconciliationOrchestrator:
    """
    Coordinates one reconciliation session.

    The orchestrator is the only component that changes session status or
    marks bank lines reconciled.
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        cache: Optional[ReconciliationCache] = None,
        engine: Optional[MatchingEngine] = None,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.engine = engine or MatchingEngine()
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger()

    async def reconcile(
        self,
        account: BankAccount,
        statement_id: str,
        options: Union[ReconciliationOptions, Dict[str, Any], None],
        user: UserContext,
        deadline: Optional[float] = None,
    ) -> ReconciliationOutcome:
        """
        Execute a reconciliation session.

        Args:
            account: Bank account, already authorized for the caller
            statement_id: Statement whose lines are reconciled
            options: Run options
            user: Caller context
            deadline: Optional time.monotonic() instant after which the run times out

        Returns:
            ReconciliationOutcome with the final session and its summary
        """
        run_options = parse_input(ReconciliationOptions, options, "reconciliation options")

        statement = await self.repository.get_statement(statement_id)
        if statement is None or statement.bank_account_id != account.id:
            raise NotFoundError(
                f"Statement {statement_id} not found for account",
                code=ErrorCode.STATEMENT_NOT_FOUND,
            )

        now = datetime.utcnow()
        session = ReconciliationSession(
            organization_id=account.organization_id,
            bank_account_id=account.id,
            bank_statement_id=statement_id,
            session_name=f"Reconciliation {now.date().isoformat()}",
            session_type=ReconciliationSessionType.DAILY,
            period_start=statement.statement_period_start or statement.statement_date,
            period_end=statement.statement_period_end or statement.statement_date,
            started_by=user.user_id,
            started_at=now,
            auto_match_enabled=run_options.auto_match,
            manual_review_required=run_options.require_manual_review,
        )
        session = await self.repository.create_session(session)

        try:
            transition_session(session, ReconciliationSessionStatus.IN_PROGRESS)
            session = await self.repository.update_session(session)
            self.audit.record(
                AuditAction.SESSION_STARTED,
                f"Reconciliation session started for statement {statement.statement_number}",
                organization_id=session.organization_id,
                session_id=session.id,
                actor=user.user_id,
            )

            outcome = await self._run(session, account, run_options, user, deadline)
        except Exception as e:
            await self._cancel(session, e, user)
            raise

        self._invalidate_cache(account)
        return outcome

    async def _run(
        self,
        session: ReconciliationSession,
        account: BankAccount,
        options: ReconciliationOptions,
        user: UserContext,
        deadline: Optional[float],
    ) -> ReconciliationOutcome:
        bank_transactions = await self.repository.list_transactions_by_statement(
            session.bank_statement_id, unreconciled_only=True
        )
        bank_transactions.sort(key=lambda t: t.date)

        ledger_entries: List[LedgerEntry] = []
        if account.ledger_account_id:
            ledger_entries = await self.repository.list_ledger_entries_for_account(account.ledger_account_id)
            ledger_entries.sort(key=lambda e: (e.entry_date, e.entry_number))

        rules = await self.repository.list_active_rules(session.organization_id)

        logger.info(
            "Reconciliation snapshot loaded",
            session_id=session.id,
            bank_transactions=len(bank_transactions),
            ledger_entries=len(ledger_entries),
            rules=len(rules),
        )

        if options.auto_match:
            result = await self._match(bank_transactions, ledger_entries, rules, options, deadline)
        else:
            result = MatchingResult()

        persisted = await self._persist_matches(session, result.matches, user)
        stats = self._persisted_stats(result.stats, persisted)

        summary = compute_summary(
            bank_transactions,
            ledger_entries,
            persisted,
            now=datetime.utcnow(),
            high_priority_amount=self.settings.high_priority_amount,
            stale_item_days=self.settings.stale_item_days,
            low_reconciliation_rate=self.settings.low_reconciliation_rate,
        )
        await self.repository.insert_summary(session.id, summary)

        session.total_transactions = summary.total_bank_transactions
        session.matched_transactions = len(persisted)
        session.unmatched_transactions = summary.total_bank_transactions - len(persisted)
        session.variance_amount = summary.variance_amount
        session.reconciliation_difference = summary.unmatched_amount
        session.reconciliation_rate = summary.reconciliation_rate

        if options.generate_insights:
            await self.repository.insert_insights(session.id, list(summary.recommendations))

        used_at = datetime.utcnow()
        for rule_id, count in stats.rule_performance.items():
            await self.repository.record_rule_usage(rule_id, count, used_at)

        # The caller's session stays in_progress until the final write succeeds
        final = copy.copy(session)
        final.completed_at = datetime.utcnow()
        final.completed_by = user.user_id
        transition_session(
            final,
            ReconciliationSessionStatus.REVIEW_REQUIRED
            if options.require_manual_review
            else ReconciliationSessionStatus.COMPLETED,
        )
        session = await self.repository.update_session(final)

        self.audit.record(
            AuditAction.SESSION_COMPLETED,
            f"Reconciliation session {session.status.value}",
            organization_id=session.organization_id,
            session_id=session.id,
            actor=user.user_id,
            matched=session.matched_transactions,
            unmatched=session.unmatched_transactions,
            reconciliation_rate=round(session.reconciliation_rate, 2),
        )

        return ReconciliationOutcome(session=session, summary=summary, stats=stats, matches=persisted)

    async def _match(
        self,
        bank_transactions: Sequence[BankTransaction],
        ledger_entries: Sequence[LedgerEntry],
        rules: Sequence[ReconciliationRule],
        options: ReconciliationOptions,
        deadline: Optional[float],
    ) -> MatchingResult:
        def checkpoint() -> None:
            check_deadline(deadline, "Reconciliation")

        batches = [
            bank_transactions[i:i + options.batch_size]
            for i in range(0, len(bank_transactions), options.batch_size)
        ]

        def run(batch):
            return self.engine.match_all(
                batch, ledger_entries, rules,
                min_score=options.confidence_threshold,
                checkpoint=checkpoint,
            )

        loop_start = asyncio.get_running_loop().time()
        if options.parallel_processing and len(batches) > 1:
            # Snapshots are read-only during matching; results keep input order
            partials = await asyncio.gather(*[asyncio.to_thread(run, b) for b in batches])
        else:
            partials = []
            for batch in batches:
                partials.append(await asyncio.to_thread(run, batch))

        merged = MatchingResult()
        for partial in partials:
            merged.matches.extend(partial.matches)
            merged.stats.merge(partial.stats)
        merged.stats.processing_time = asyncio.get_running_loop().time() - loop_start
        return merged

    async def _persist_matches(
        self,
        session: ReconciliationSession,
        matches: Sequence[ReconciliationMatch],
        user: UserContext,
    ) -> List[ReconciliationMatch]:
        persisted: List[ReconciliationMatch] = []

        for match in matches:
            match.session_id = session.id
            match.matched_by = user.user_id
            try:
                saved = await self.repository.insert_match(match)
                if saved.status == ReconciliationMatchStatus.AUTO_APPROVED:
                    await self.repository.update_transaction_reconciled(
                        saved.bank_transaction_id,
                        saved.ledger_transaction_id,
                        saved.confidence_score,
                    )
                    self.audit.record(
                        AuditAction.MATCH_AUTO_APPROVED,
                        "Bank transaction reconciled by auto-approved match",
                        organization_id=session.organization_id,
                        session_id=session.id,
                        transaction_ids=[saved.bank_transaction_id, saved.ledger_transaction_id],
                        confidence_score=saved.confidence_score,
                        rule_id=saved.rule_id,
                    )
            except Exception as e:
                logger.warning(
                    "Failed to save match",
                    session_id=session.id,
                    bank_transaction_id=match.bank_transaction_id,
                    error=str(e),
                )
                continue
            persisted.append(saved)

        if persisted:
            self.audit.record(
                AuditAction.MATCH_CREATED,
                f"{len(persisted)} matches recorded",
                organization_id=session.organization_id,
                session_id=session.id,
                transaction_ids=[m.bank_transaction_id for m in persisted],
            )
        return persisted

    @staticmethod
    def _persisted_stats(run_stats: MatchingStats, persisted: Sequence[ReconciliationMatch]) -> MatchingStats:
        """Stats recounted from the matches that were actually stored."""
        stats = MatchingStats(
            processing_time=run_stats.processing_time,
            transactions_processed=run_stats.transactions_processed,
        )
        for match in persisted:
            stats.record(match)
        return stats

    async def _cancel(self, session: ReconciliationSession, error: Exception, user: UserContext) -> None:
        logger.error("Reconciliation failed", session_id=session.id, error=str(error))
        try:
            session.status = ReconciliationSessionStatus.CANCELLED
            session.notes = f"Processing failed: {error}"
            await self.repository.update_session(session)
        except Exception as e:
            logger.error("Could not cancel session", session_id=session.id, error=str(e))
        self.audit.record(
            AuditAction.SESSION_CANCELLED,
            "Reconciliation session cancelled",
            organization_id=session.organization_id,
            session_id=session.id,
            actor=user.user_id,
            success=False,
            error_message=str(error),
        )

    def _invalidate_cache(self, account: BankAccount) -> None:
        if self.cache is None:
            return
        try:
            self.cache.invalidate(f":{account.id}:")
            self.cache.invalidate(f"analytics:{account.organization_id}:")
        except Exception as e:
            logger.warning("Cache update failed after reconciliation", error=str(e))
