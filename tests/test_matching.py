"""
Tests for the matching engine and description similarity.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from bankrec.errors import OperationTimeoutError
from bankrec.models import (
    MatchingCriteria,
    ReconciliationMatchStatus,
    ReconciliationMatchType,
    ReconciliationRuleType,
)
from bankrec.reconciliation.matching import MatchingEngine
from bankrec.utils.text_similarity import (
    description_similarity,
    fuzzy_similarity,
    jaccard_similarity,
)


@pytest.fixture
def engine():
    return MatchingEngine()


class TestTextSimilarity:
    """Word-set similarity of descriptions."""

    def test_identical_ignoring_case_and_whitespace(self):
        assert jaccard_similarity("  ACME Payment ", "acme payment") == 1.0

    def test_empty_side_scores_zero(self):
        assert jaccard_similarity("", "acme") == 0.0
        assert jaccard_similarity("acme", "   ") == 0.0

    def test_partial_overlap(self):
        # {acme, payment, invoice} vs {acme, payment}
        assert jaccard_similarity("ACME payment invoice", "acme payment") == pytest.approx(2 / 3)

    def test_symmetric(self):
        a, b = "wire transfer acme", "acme corp transfer"
        assert jaccard_similarity(a, b) == jaccard_similarity(b, a)

    def test_fuzzy_never_lowers_score(self):
        a, b = "ACME CORP PAYMT 1234", "Acme Corp payment 1234"
        assert description_similarity(a, b, fuzzy=True) >= jaccard_similarity(a, b)
        assert 0.0 <= fuzzy_similarity(a, b) <= 1.0


class TestMatchingEngine:
    """Rule-driven scoring of bank lines against ledger entries."""

    def test_exact_amount_and_date_match(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        """Ledger totals are compared by absolute value."""
        rule = make_rule()
        bank_tx = make_bank_tx("100.00")
        entry = make_ledger_entry("-100.00")

        match = engine.match_transaction(bank_tx, [entry], [rule])

        assert match is not None
        assert match.confidence_score == 1.0
        assert match.matching_criteria == ["amount", "date"]
        assert match.match_type == ReconciliationMatchType.EXACT
        assert match.ledger_transaction_id == entry.id
        assert match.rule_id == rule.id
        assert match.variance_amount == Decimal("0")
        assert match.status == ReconciliationMatchStatus.PENDING

    @pytest.mark.parametrize("tolerance", ["0", "0.01", "5", "250"])
    @pytest.mark.parametrize("difference", ["0", "0.01", "4.99", "5.01", "300"])
    def test_amount_only_rule_matches_within_tolerance(
        self, engine, make_rule, make_bank_tx, make_ledger_entry, tolerance, difference
    ):
        rule = make_rule(criteria=MatchingCriteria(
            date_match=False,
            amount_tolerance=Decimal(tolerance),
            min_confidence=1.0,
        ))
        bank_tx = make_bank_tx("100.00")
        entry = make_ledger_entry(Decimal("-100.00") - Decimal(difference))

        match = engine.match_transaction(bank_tx, [entry], [rule])

        assert (match is not None) == (Decimal(difference) <= Decimal(tolerance))

    def test_first_qualifying_candidate_wins(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        rule = make_rule()
        bank_tx = make_bank_tx("100.00")
        first = make_ledger_entry("100.00")
        second = make_ledger_entry("100.00")

        match = engine.match_transaction(bank_tx, [first, second], [rule])

        assert match.ledger_transaction_id == first.id

    def test_partial_score_against_min_confidence(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        """Amount matches but date is two days off: score 0.5."""
        bank_tx = make_bank_tx("100.00", on=date(2024, 1, 10))
        entry = make_ledger_entry("100.00", on=date(2024, 1, 12))

        lenient = make_rule()
        strict = make_rule(criteria=MatchingCriteria(min_confidence=0.75))

        assert engine.match_transaction(bank_tx, [entry], [lenient]).confidence_score == 0.5
        assert engine.match_transaction(bank_tx, [entry], [strict]) is None

    def test_date_tolerance(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        rule = make_rule(criteria=MatchingCriteria(date_tolerance=3, min_confidence=1.0))
        bank_tx = make_bank_tx("100.00", on=date(2024, 1, 10))

        assert engine.match_transaction(bank_tx, [make_ledger_entry("100", on=date(2024, 1, 13))], [rule])
        assert engine.match_transaction(bank_tx, [make_ledger_entry("100", on=date(2024, 1, 14))], [rule]) is None

    def test_candidate_matching_nothing_is_never_accepted(
        self, engine, make_rule, make_bank_tx, make_ledger_entry
    ):
        rule = make_rule(criteria=MatchingCriteria(min_confidence=0.0))
        bank_tx = make_bank_tx("100.00", on=date(2024, 1, 10))
        entry = make_ledger_entry("999.00", on=date(2024, 3, 1))

        assert engine.match_transaction(bank_tx, [entry], [rule]) is None

    def test_rules_tried_in_order(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        high = make_rule(rule_name="high", priority=90)
        low = make_rule(rule_name="low", priority=10)
        bank_tx = make_bank_tx("100.00")
        entry = make_ledger_entry("100.00")

        match = engine.match_transaction(bank_tx, [entry], [high, low])

        assert match.rule_id == high.id
        assert match.match_details["rule_name"] == "high"

    def test_run_threshold_falls_through_to_next_rule(
        self, engine, make_rule, make_bank_tx, make_ledger_entry
    ):
        """A rule answer under min_score does not stop later rules."""
        bank_tx = make_bank_tx("100.00", on=date(2024, 1, 10))
        entry = make_ledger_entry("100.00", on=date(2024, 1, 12))
        amount_only_date = make_rule(rule_name="amount and date")
        amount_only = make_rule(
            rule_name="amount only",
            criteria=MatchingCriteria(date_match=False, min_confidence=0.5),
        )

        match = engine.match_transaction(bank_tx, [entry], [amount_only_date, amount_only], min_score=0.8)

        assert match.rule_id == amount_only.id
        assert match.confidence_score == 1.0

    def test_auto_approval_threshold(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        rule = make_rule(auto_approve=True, confidence_threshold=0.9)
        bank_tx = make_bank_tx("100.00")

        exact = engine.match_transaction(bank_tx, [make_ledger_entry("100.00")], [rule])
        half = engine.match_transaction(
            bank_tx, [make_ledger_entry("100.00", on=date(2024, 2, 1))], [rule]
        )

        assert exact.status == ReconciliationMatchStatus.AUTO_APPROVED
        assert half.status == ReconciliationMatchStatus.PENDING

    def test_reference_applicable_only_with_bank_reference(
        self, engine, make_rule, make_bank_tx, make_ledger_entry
    ):
        criteria = MatchingCriteria(
            reference_match=True,
            reference_patterns=["INV-77"],
            min_confidence=1.0,
        )
        rule = make_rule(criteria=criteria)
        entry = make_ledger_entry("100.00")

        with_ref = engine.match_transaction(make_bank_tx("100.00", reference="PAY INV-77"), [entry], [rule])
        mismatched_ref = engine.match_transaction(make_bank_tx("100.00", reference="PAY INV-78"), [entry], [rule])
        without_ref = engine.match_transaction(make_bank_tx("100.00"), [entry], [rule])

        assert with_ref.matching_criteria == ["amount", "date", "reference"]
        assert mismatched_ref is None
        assert without_ref.confidence_score == 1.0
        assert without_ref.match_details["applicable_criteria"] == 2

    def test_description_similarity_criterion(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        criteria = MatchingCriteria(
            amount_match=False,
            date_match=False,
            description_match=True,
            description_similarity=0.6,
            min_confidence=1.0,
        )
        rule = make_rule(criteria=criteria, rule_type=ReconciliationRuleType.FUZZY_MATCH)
        bank_tx = make_bank_tx("10.00", description="ACME invoice 42 payment")
        entry = make_ledger_entry("99.00", description="acme invoice 42")

        match = engine.match_transaction(bank_tx, [entry], [rule])

        assert match.match_type == ReconciliationMatchType.FUZZY
        assert match.match_details["text_similarity"] == pytest.approx(0.75)

    def test_no_rules_or_candidates(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        bank_tx = make_bank_tx("100.00")
        assert engine.match_transaction(bank_tx, [make_ledger_entry("100")], []) is None
        assert engine.match_transaction(bank_tx, [], [make_rule()]) is None

    def test_match_all_skips_reconciled_lines(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        rule = make_rule()
        entry = make_ledger_entry("100.00")
        open_tx = make_bank_tx("100.00")
        done_tx = make_bank_tx("100.00", is_reconciled=True)

        result = engine.match_all([open_tx, done_tx], [entry], [rule])

        assert [m.bank_transaction_id for m in result.matches] == [open_tx.id]
        assert result.stats.transactions_processed == 1
        assert result.stats.matches_found == 1
        assert result.stats.rule_performance == {rule.id: 1}
        assert result.stats.confidence_distribution == {100: 1}

    def test_checkpoint_aborts_pass(self, engine, make_rule, make_bank_tx, make_ledger_entry):
        calls = []

        def checkpoint():
            calls.append(1)
            if len(calls) > 2:
                raise OperationTimeoutError("Reconciliation exceeded its deadline")

        lines = [make_bank_tx("100.00", on=date(2024, 1, 1) + timedelta(days=i)) for i in range(5)]

        with pytest.raises(OperationTimeoutError):
            engine.match_all(lines, [make_ledger_entry("100")], [make_rule()], checkpoint=checkpoint)
        assert len(calls) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
