"""
Tests for the reconciliation orchestrator and analytics.
"""

import time
import pytest
from datetime import date, timedelta
from decimal import Decimal

from bankrec.errors import (
    ErrorCode,
    NotFoundError,
    OperationTimeoutError,
    ProcessingError,
    ValidationFailedError,
)
from bankrec.models import (
    BankStatement,
    BankTransaction,
    ReconciliationMatchStatus,
    ReconciliationSessionStatus,
)
from bankrec.reconciliation import (
    AnalyticsGenerator,
    MatchingEngine,
    ReconciliationOrchestrator,
    check_match_transition,
    transition_session,
)
from bankrec.utils.audit_logger import AuditLogger
from bankrec.utils.cache import ReconciliationCache
from bankrec.utils.performance import PerformanceMonitor


class ExplodingEngine(MatchingEngine):
    def match_all(self, *args, **kwargs):
        raise RuntimeError("engine failure")


@pytest.fixture
def cache(settings):
    return ReconciliationCache(ttl_by_type=settings.cache_ttls)


@pytest.fixture
def audit():
    return AuditLogger(trail_id="test")


@pytest.fixture
def orchestrator(repository, cache, settings, audit):
    return ReconciliationOrchestrator(repository, cache=cache, settings=settings, audit=audit)


class TestReconciliationOrchestrator:
    """Session lifecycle around one matching run."""

    @pytest.mark.asyncio
    async def test_no_rules_leaves_everything_outstanding(
        self, orchestrator, repository, account, seeded_statement, user
    ):
        statement, lines, entries = seeded_statement

        outcome = await orchestrator.reconcile(account, statement.id, None, user)

        session = outcome.session
        assert session.status == ReconciliationSessionStatus.COMPLETED
        assert session.session_name.startswith("Reconciliation ")
        assert session.period_start == date(2024, 1, 1)
        assert session.total_transactions == 4
        assert session.matched_transactions == 0
        assert session.reconciliation_rate == 0.0
        assert len(outcome.summary.outstanding_items) == 4 + 3
        assert repository.sessions[session.id].status == ReconciliationSessionStatus.COMPLETED
        assert session.id in repository.summaries

    @pytest.mark.asyncio
    async def test_auto_approved_matches_reconcile_lines(
        self, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, lines, entries = seeded_statement
        rule = make_rule(auto_approve=True, confidence_threshold=0.9)
        repository.rules[rule.id] = rule

        outcome = await orchestrator.reconcile(account, statement.id, {"confidence_threshold": 0.5}, user)

        assert outcome.session.matched_transactions == 3
        assert outcome.session.unmatched_transactions == 1
        assert outcome.session.reconciliation_rate == pytest.approx(75.0)
        assert outcome.stats.matches_found == 3
        assert all(m.status == ReconciliationMatchStatus.AUTO_APPROVED for m in outcome.matches)
        assert all(m.session_id == outcome.session.id for m in outcome.matches)
        assert all(m.matched_by == user.user_id for m in outcome.matches)

        reconciled = {t.id for t in repository.transactions.values() if t.is_reconciled}
        assert reconciled == {t.id for t in lines[:3]}
        assert repository.transactions[lines[0].id].matched_transaction_id == entries[0].id
        assert repository.transactions[lines[0].id].confidence_score == 1.0
        assert repository.transactions[lines[3].id].confidence_score is None

        assert repository.rules[rule.id].usage_count == 3
        assert repository.rules[rule.id].last_used is not None

    @pytest.mark.asyncio
    async def test_pending_matches_leave_lines_open(
        self, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, lines, entries = seeded_statement
        rule = make_rule(auto_approve=False)
        repository.rules[rule.id] = rule

        outcome = await orchestrator.reconcile(account, statement.id, {"confidence_threshold": 0.5}, user)

        assert len(outcome.matches) == 3
        assert all(m.status == ReconciliationMatchStatus.PENDING for m in outcome.matches)
        assert not any(t.is_reconciled for t in repository.transactions.values())

    @pytest.mark.asyncio
    async def test_second_run_only_sees_unreconciled_lines(
        self, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, _, _ = seeded_statement
        repository.rules["r"] = make_rule(id="r", auto_approve=True)

        await orchestrator.reconcile(account, statement.id, {"confidence_threshold": 0.5}, user)
        second = await orchestrator.reconcile(account, statement.id, {"confidence_threshold": 0.5}, user)

        assert second.session.total_transactions == 1
        assert second.session.matched_transactions == 0

    @pytest.mark.asyncio
    async def test_manual_review_and_insights(
        self, orchestrator, repository, account, seeded_statement, user
    ):
        statement, _, _ = seeded_statement

        outcome = await orchestrator.reconcile(
            account, statement.id,
            {"require_manual_review": True, "generate_insights": True},
            user,
        )

        assert outcome.session.status == ReconciliationSessionStatus.REVIEW_REQUIRED
        assert outcome.session.manual_review_required
        assert repository.insights[outcome.session.id] == outcome.summary.recommendations

    @pytest.mark.asyncio
    async def test_auto_match_disabled(
        self, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, _, _ = seeded_statement
        repository.rules["r"] = make_rule(id="r")

        outcome = await orchestrator.reconcile(account, statement.id, {"auto_match": False}, user)

        assert outcome.matches == []
        assert repository.matches == {}

    @pytest.mark.asyncio
    async def test_parallel_batches_match_sequential_result(
        self, repository, account, user, make_rule, make_ledger_entry, settings
    ):
        statement = BankStatement(
            bank_account_id=account.id, statement_number="P-1", statement_date=date(2024, 3, 31)
        )
        repository.statements[statement.id] = statement
        for i in range(7):
            day = date(2024, 3, 1) + timedelta(days=i)
            tx = BankTransaction(
                bank_statement_id=statement.id, date=day, description=f"Line {i}", amount=Decimal(10 + i)
            )
            repository.transactions[tx.id] = tx
            repository.add_ledger_entries([make_ledger_entry(10 + i, on=day)])
        repository.rules["r"] = make_rule(id="r")

        orchestrator = ReconciliationOrchestrator(repository, settings=settings)
        parallel = await orchestrator.reconcile(
            account, statement.id,
            {"batch_size": 2, "parallel_processing": True, "confidence_threshold": 0.5},
            user,
        )
        sequential = await orchestrator.reconcile(
            account, statement.id, {"batch_size": 2, "confidence_threshold": 0.5}, user
        )

        def pairs(outcome):
            return [(m.bank_transaction_id, m.ledger_transaction_id) for m in outcome.matches]

        assert len(parallel.matches) == 7
        assert pairs(parallel) == pairs(sequential)
        assert parallel.stats.transactions_processed == 7

    @pytest.mark.asyncio
    async def test_failure_cancels_session(
        self, repository, account, seeded_statement, user, make_rule, settings, audit
    ):
        statement, _, _ = seeded_statement
        repository.rules["r"] = make_rule(id="r")
        orchestrator = ReconciliationOrchestrator(
            repository, engine=ExplodingEngine(), settings=settings, audit=audit
        )

        with pytest.raises(RuntimeError):
            await orchestrator.reconcile(account, statement.id, None, user)

        (session,) = repository.sessions.values()
        assert session.status == ReconciliationSessionStatus.CANCELLED
        assert session.notes == "Processing failed: engine failure"
        assert audit.get_entries(success_only=False)[-1].success is False

    @pytest.mark.asyncio
    async def test_insight_failure_cancels_session(
        self, orchestrator, repository, account, seeded_statement, user, make_rule, monkeypatch
    ):
        statement, _, _ = seeded_statement
        repository.rules["r"] = make_rule(id="r")

        async def failing_insert(session_id, insights):
            raise RuntimeError("insights unavailable")

        monkeypatch.setattr(repository, "insert_insights", failing_insert)

        with pytest.raises(RuntimeError):
            await orchestrator.reconcile(account, statement.id, {"generate_insights": True}, user)

        (session,) = repository.sessions.values()
        assert session.status == ReconciliationSessionStatus.CANCELLED
        assert session.notes == "Processing failed: insights unavailable"
        assert session.completed_at is None

    @pytest.mark.asyncio
    async def test_failed_final_write_cancels_session(
        self, orchestrator, repository, account, seeded_statement, user, monkeypatch
    ):
        statement, _, _ = seeded_statement
        original_update = repository.update_session

        async def update_session(session):
            if session.status == ReconciliationSessionStatus.COMPLETED:
                raise RuntimeError("write rejected")
            return await original_update(session)

        monkeypatch.setattr(repository, "update_session", update_session)

        with pytest.raises(RuntimeError):
            await orchestrator.reconcile(account, statement.id, None, user)

        (session,) = repository.sessions.values()
        assert session.status == ReconciliationSessionStatus.CANCELLED
        assert session.notes == "Processing failed: write rejected"

    @pytest.mark.asyncio
    async def test_deadline_cancels_session(
        self, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, _, _ = seeded_statement
        repository.rules["r"] = make_rule(id="r")

        with pytest.raises(OperationTimeoutError):
            await orchestrator.reconcile(account, statement.id, None, user, deadline=time.monotonic() - 1)

        (session,) = repository.sessions.values()
        assert session.status == ReconciliationSessionStatus.CANCELLED
        assert repository.matches == {}

    @pytest.mark.asyncio
    async def test_unknown_statement(self, orchestrator, repository, account, user):
        with pytest.raises(NotFoundError) as excinfo:
            await orchestrator.reconcile(account, "missing", None, user)

        assert excinfo.value.code == ErrorCode.STATEMENT_NOT_FOUND
        assert repository.sessions == {}

    @pytest.mark.asyncio
    async def test_invalid_options(self, orchestrator, account, seeded_statement, user):
        statement, _, _ = seeded_statement
        with pytest.raises(ValidationFailedError):
            await orchestrator.reconcile(account, statement.id, {"batch_size": 0, "bogus": True}, user)

    @pytest.mark.asyncio
    async def test_cache_invalidated_after_run(
        self, orchestrator, cache, account, seeded_statement, user
    ):
        statement, _, _ = seeded_statement
        cache.set(f"bank_account:org-1:{account.id}:all:current:none", account)
        cache.set("analytics:org-1:all:all:monthly:none", "stale")
        cache.set("bank_account:org-1:other-account:all:current:none", "kept")

        await orchestrator.reconcile(account, statement.id, None, user)

        assert f"bank_account:org-1:{account.id}:all:current:none" not in cache
        assert "analytics:org-1:all:all:monthly:none" not in cache
        assert "bank_account:org-1:other-account:all:current:none" in cache
        assert len(cache) == 1


class TestStatusTransitions:

    def test_terminal_session_cannot_move(self, account):
        from bankrec.models import ReconciliationSession

        session = ReconciliationSession(
            organization_id="org-1",
            bank_account_id=account.id,
            bank_statement_id="s",
            status=ReconciliationSessionStatus.COMPLETED,
        )
        with pytest.raises(ProcessingError):
            transition_session(session, ReconciliationSessionStatus.IN_PROGRESS)

    @pytest.mark.parametrize("current,new,allowed", [
        (ReconciliationMatchStatus.PENDING, ReconciliationMatchStatus.APPROVED, True),
        (ReconciliationMatchStatus.AUTO_APPROVED, ReconciliationMatchStatus.REJECTED, True),
        (ReconciliationMatchStatus.REVIEW_REQUIRED, ReconciliationMatchStatus.APPROVED, True),
        (ReconciliationMatchStatus.APPROVED, ReconciliationMatchStatus.REJECTED, False),
        (ReconciliationMatchStatus.PENDING, ReconciliationMatchStatus.AUTO_APPROVED, False),
    ])
    def test_match_transitions(self, current, new, allowed):
        if allowed:
            check_match_transition(current, new)
        else:
            with pytest.raises(ValidationFailedError):
                check_match_transition(current, new)


class TestAnalyticsGenerator:
    """Aggregates over stored sessions."""

    @pytest.fixture
    def generator(self, repository, cache, settings):
        return AnalyticsGenerator(repository, cache, PerformanceMonitor(), settings)

    @pytest.mark.asyncio
    async def test_analytics_after_runs(
        self, generator, orchestrator, repository, account, seeded_statement, user, make_rule
    ):
        statement, _, _ = seeded_statement
        rule = make_rule(auto_approve=True)
        repository.rules[rule.id] = rule
        await orchestrator.reconcile(account, statement.id, {"confidence_threshold": 0.5}, user)

        analytics, cache_hit = await generator.generate("org-1", "monthly")

        assert cache_hit is False
        (trend,) = analytics.reconciliation_trends
        assert trend.total_sessions == 1
        assert trend.matched_transactions == 3
        assert trend.reconciliation_rate == pytest.approx(75.0)

        (effectiveness,) = analytics.rule_effectiveness
        assert effectiveness.rule_id == rule.id
        assert effectiveness.matches_found == 3
        assert effectiveness.accuracy_rate == 1.0

        assert analytics.cost_savings.auto_approved_matches == 3
        assert analytics.cost_savings.manual_hours_saved == pytest.approx(3 * 3.0 / 60)

        again, cache_hit = await generator.generate("org-1", "monthly")
        assert cache_hit is True
        assert again is analytics

    @pytest.mark.asyncio
    async def test_low_rate_recommendation(self, generator, orchestrator, account, seeded_statement, user):
        statement, _, _ = seeded_statement
        await orchestrator.reconcile(account, statement.id, None, user)

        analytics, _ = await generator.generate("org-1", "weekly")

        assert analytics.recommendations[0].type == "rule_creation"
        assert analytics.reconciliation_trends[0].period.count("-W") == 1

    @pytest.mark.asyncio
    async def test_empty_organization(self, generator):
        analytics, _ = await generator.generate("org-empty", "quarterly")

        assert analytics.reconciliation_trends == []
        assert analytics.exception_patterns == []
        assert analytics.recommendations == []

    @pytest.mark.asyncio
    async def test_invalid_period(self, generator):
        with pytest.raises(ValidationFailedError):
            await generator.generate("org-1", "hourly")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
