"""
Matching Engine - rule-driven scoring of bank lines against ledger entries.

Rules are tried in the order given (highest priority first). Within a rule,
ledger candidates are tried in the order given and the first candidate whose
score reaches the rule's min_confidence is the rule's answer. The first rule
whose answer also clears the run threshold wins.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

import structlog

from ..models import (
    BankTransaction,
    LedgerEntry,
    MatchingStats,
    ReconciliationMatch,
    ReconciliationMatchStatus,
    ReconciliationMatchType,
    ReconciliationRule,
    ReconciliationRuleType,
)
from ..utils.text_similarity import description_similarity

logger = structlog.get_logger()

MATCH_TYPE_BY_RULE = {
    ReconciliationRuleType.EXACT_MATCH: ReconciliationMatchType.EXACT,
    ReconciliationRuleType.PATTERN_MATCH: ReconciliationMatchType.PATTERN,
}


@dataclass
class CandidateScore:
    """Score of one ledger candidate under one rule."""
    ledger_entry: LedgerEntry
    score: float
    matched_criteria: List[str]
    applicable_criteria: int
    amount_diff: Decimal
    date_diff: int
    text_similarity: Optional[float] = None


@dataclass
class MatchingResult:
    """Matches produced by one engine pass and the statistics collected."""
    matches: List[ReconciliationMatch] = field(default_factory=list)
    stats: MatchingStats = field(default_factory=MatchingStats)


class MatchingEngine:
    """
    Stateless scorer.

    Criteria evaluated per candidate (each counted only when enabled):
    1. Amount: |bank amount - |ledger total|| within amount_tolerance
    2. Date: whole-day difference within date_tolerance
    3. Description: word-set similarity at or above description_similarity
    4. Reference: any pattern inside the bank reference or the ledger entry
       number; applicable only when the bank line carries a reference

    Score = matched / applicable. A candidate matching no criterion is never
    accepted, whatever min_confidence is.
    """

    def score_candidate(
        self,
        bank_tx: BankTransaction,
        ledger_entry: LedgerEntry,
        rule: ReconciliationRule,
    ) -> CandidateScore:
        criteria = rule.criteria
        matched: List[str] = []
        applicable = 0

        amount_diff = abs(bank_tx.amount - abs(ledger_entry.total))
        date_diff = abs((bank_tx.date - ledger_entry.entry_date).days)
        similarity = None

        if criteria.amount_match:
            applicable += 1
            if amount_diff <= criteria.amount_tolerance:
                matched.append("amount")

        if criteria.date_match:
            applicable += 1
            if date_diff <= criteria.date_tolerance:
                matched.append("date")

        if criteria.description_match:
            applicable += 1
            similarity = description_similarity(
                bank_tx.description,
                ledger_entry.description,
                fuzzy=criteria.fuzzy_matching,
            )
            if similarity >= criteria.description_similarity:
                matched.append("description")

        if criteria.reference_match and bank_tx.reference:
            applicable += 1
            entry_number = ledger_entry.entry_number or ""
            if any(
                pattern in bank_tx.reference or pattern in entry_number
                for pattern in criteria.reference_patterns
            ):
                matched.append("reference")

        score = len(matched) / applicable if applicable else 0.0
        return CandidateScore(
            ledger_entry=ledger_entry,
            score=score,
            matched_criteria=matched,
            applicable_criteria=applicable,
            amount_diff=amount_diff,
            date_diff=date_diff,
            text_similarity=similarity,
        )

    def apply_rule(
        self,
        bank_tx: BankTransaction,
        ledger_candidates: Sequence[LedgerEntry],
        rule: ReconciliationRule,
    ) -> Optional[ReconciliationMatch]:
        """First candidate accepted by the rule, as an unsaved match."""
        for ledger_entry in ledger_candidates:
            candidate = self.score_candidate(bank_tx, ledger_entry, rule)
            if not candidate.matched_criteria:
                continue
            if candidate.score >= rule.criteria.min_confidence:
                return self._build_match(bank_tx, candidate, rule)
        return None

    def match_transaction(
        self,
        bank_tx: BankTransaction,
        ledger_candidates: Sequence[LedgerEntry],
        rules: Sequence[ReconciliationRule],
        min_score: float = 0.0,
    ) -> Optional[ReconciliationMatch]:
        """
        Match one bank line.

        Args:
            bank_tx: Bank line to match
            ledger_candidates: Ledger entries, in the order they should be tried
            rules: Rules, highest priority first
            min_score: Run-wide threshold a rule's answer must also clear

        Returns:
            The first qualifying match, or None
        """
        if not ledger_candidates or not rules:
            return None

        for rule in rules:
            match = self.apply_rule(bank_tx, ledger_candidates, rule)
            if match is not None and match.confidence_score >= min_score:
                return match
        return None

    def match_all(
        self,
        bank_transactions: Sequence[BankTransaction],
        ledger_candidates: Sequence[LedgerEntry],
        rules: Sequence[ReconciliationRule],
        min_score: float = 0.0,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> MatchingResult:
        """
        Match every unreconciled bank line.

        checkpoint, when given, is called before each line is evaluated and may
        raise to abort the pass (deadline enforcement).
        """
        start = time.perf_counter()
        result = MatchingResult()

        for bank_tx in bank_transactions:
            if bank_tx.is_reconciled:
                continue
            if checkpoint is not None:
                checkpoint()

            result.stats.transactions_processed += 1
            match = self.match_transaction(bank_tx, ledger_candidates, rules, min_score)
            if match is not None:
                result.matches.append(match)
                result.stats.record(match)

        result.stats.processing_time = time.perf_counter() - start

        logger.debug(
            "Matching pass complete",
            processed=result.stats.transactions_processed,
            matches=result.stats.matches_found,
            rules=len(rules),
            candidates=len(ledger_candidates),
        )
        return result

    @staticmethod
    def _build_match(
        bank_tx: BankTransaction,
        candidate: CandidateScore,
        rule: ReconciliationRule,
    ) -> ReconciliationMatch:
        auto_approved = rule.auto_approve and candidate.score >= rule.confidence_threshold
        details = {
            "rule_id": rule.id,
            "rule_name": rule.rule_name,
            "amount_diff": candidate.amount_diff,
            "date_diff": candidate.date_diff,
            "applicable_criteria": candidate.applicable_criteria,
        }
        if candidate.text_similarity is not None:
            details["text_similarity"] = round(candidate.text_similarity, 4)

        return ReconciliationMatch(
            bank_transaction_id=bank_tx.id,
            ledger_transaction_id=candidate.ledger_entry.id,
            confidence_score=candidate.score,
            match_type=MATCH_TYPE_BY_RULE.get(rule.rule_type, ReconciliationMatchType.FUZZY),
            matching_criteria=list(candidate.matched_criteria),
            match_details=details,
            status=(
                ReconciliationMatchStatus.AUTO_APPROVED
                if auto_approved
                else ReconciliationMatchStatus.PENDING
            ),
            rule_id=rule.id,
            variance_amount=candidate.amount_diff,
        )
