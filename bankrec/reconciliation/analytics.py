"""
Analytics over historical reconciliation sessions.

Read-only: sessions, stored summaries, matches and rules are aggregated into
trends, exception patterns, rule effectiveness, cost savings and
recommendations. Results are cached under the analytics TTL tier.
"""

from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..config import Settings, get_settings
from ..errors import ValidationFailedError
from ..models import (
    AnalyticsRecommendation,
    BankReconciliationAnalytics,
    CostSavings,
    PatternData,
    ProcessingPerformance,
    ReconciliationMatch,
    ReconciliationMatchStatus,
    ReconciliationRule,
    ReconciliationSession,
    ReconciliationSessionStatus,
    ReconciliationSummary,
    RuleEffectiveness,
    TrendData,
)
from ..repository import ReconciliationRepository
from ..utils.cache import CacheKey, ReconciliationCache
from ..utils.performance import PerformanceMonitor

logger = structlog.get_logger()

PERIODS = ("daily", "weekly", "monthly", "quarterly", "annual")

SUGGESTED_RULES = {
    "duplicate_transaction": "Flag repeated statement lines before matching",
    "amount_mismatch": "Tighten amount tolerance on auto-approving rules",
    "date_mismatch": "Add a date-tolerant rule for delayed postings",
    "unmatched_transaction": "Create description or reference rules for recurring unmatched lines",
    "data_quality": "Validate statement exports for zero-amount lines",
    "missing_transaction": "Check ledger posting completeness",
    "system_error": "Investigate failed reconciliation runs",
}


def period_key(when: datetime, period: str) -> str:
    """Bucket label for a timestamp."""
    if period == "daily":
        return when.strftime("%Y-%m-%d")
    if period == "weekly":
        year, week, _ = when.isocalendar()
        return f"{year}-W{week:02d}"
    if period == "monthly":
        return when.strftime("%Y-%m")
    if period == "quarterly":
        return f"{when.year}-Q{(when.month - 1) // 3 + 1}"
    return str(when.year)


class AnalyticsGenerator:
    """Builds BankReconciliationAnalytics for one organization."""

    def __init__(
        self,
        repository: ReconciliationRepository,
        cache: Optional[ReconciliationCache] = None,
        monitor: Optional[PerformanceMonitor] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.monitor = monitor
        self.settings = settings or get_settings()

    async def generate(
        self,
        organization_id: str,
        period: str = "monthly",
        account_ids: Optional[Sequence[str]] = None,
    ) -> Tuple[BankReconciliationAnalytics, bool]:
        """
        Analytics for the organization, optionally limited to some accounts.

        Returns:
            (analytics, cache_hit)
        """
        if period not in PERIODS:
            raise ValidationFailedError(
                f"Invalid period: {period}",
                details=[f"period: must be one of {', '.join(PERIODS)}"],
            )

        key = ReconciliationCache.generate_key(CacheKey(
            type="analytics",
            organization_id=organization_id,
            date_range=period,
            filters={"account_ids": sorted(account_ids)} if account_ids else None,
        ))
        cached = self._cache_get(key)
        if cached is not None:
            return cached, True

        sessions, _ = await self.repository.list_sessions(organization_id, account_ids=account_ids)
        session_ids = [s.id for s in sessions]
        summaries = await self.repository.list_summaries(session_ids)
        matches = await self.repository.list_matches(session_ids=session_ids) if session_ids else []
        rules = await self.repository.list_rules(organization_id)

        trends = self._trends(sessions, period)
        patterns = self._exception_patterns(summaries)
        effectiveness = self._rule_effectiveness(rules, matches)
        performance = self._processing_performance()
        savings = self._cost_savings(matches)

        analytics = BankReconciliationAnalytics(
            organization_id=organization_id,
            period=period,
            reconciliation_trends=trends,
            exception_patterns=patterns,
            rule_effectiveness=effectiveness,
            processing_performance=performance,
            cost_savings=savings,
            recommendations=self._recommendations(sessions, patterns, effectiveness, performance),
        )

        logger.info(
            "Analytics generated",
            organization_id=organization_id,
            period=period,
            sessions=len(sessions),
            matches=len(matches),
        )

        if self.cache is not None:
            try:
                self.cache.set(key, analytics, self.cache.ttl_for("analytics"))
            except Exception as e:
                logger.warning("Analytics cache write failed", error=str(e))
        return analytics, False

    def _cache_get(self, key: str):
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning("Analytics cache read failed", error=str(e))
            return None

    @staticmethod
    def _trends(sessions: Sequence[ReconciliationSession], period: str) -> List[TrendData]:
        buckets: Dict[str, List[ReconciliationSession]] = defaultdict(list)
        for session in sessions:
            buckets[period_key(session.started_at, period)].append(session)

        trends = []
        for label in sorted(buckets):
            group = buckets[label]
            finished = [s for s in group if s.status != ReconciliationSessionStatus.CANCELLED]
            total = sum(s.total_transactions for s in finished)
            matched = sum(s.matched_transactions for s in finished)
            trends.append(TrendData(
                period=label,
                total_sessions=len(group),
                total_transactions=total,
                matched_transactions=matched,
                reconciliation_rate=matched / total * 100 if total else 0.0,
                total_variance=sum((s.variance_amount for s in finished), Decimal("0")),
                cancelled_sessions=len(group) - len(finished),
            ))
        return trends

    @staticmethod
    def _exception_patterns(summaries: Dict[str, ReconciliationSummary]) -> List[PatternData]:
        frequency: Counter = Counter()
        impact: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for summary in summaries.values():
            for exception in summary.exceptions:
                kind = exception.type.value
                frequency[kind] += 1
                impact[kind] += abs(exception.amount)

        return [
            PatternData(
                pattern=kind,
                frequency=count,
                impact=impact[kind],
                category=kind,
                suggested_rule=SUGGESTED_RULES.get(kind, "Review reconciliation rules"),
            )
            for kind, count in frequency.most_common()
        ]

    @staticmethod
    def _rule_effectiveness(
        rules: Sequence[ReconciliationRule],
        matches: Sequence[ReconciliationMatch],
    ) -> List[RuleEffectiveness]:
        by_rule: Dict[str, List[ReconciliationMatch]] = defaultdict(list)
        for match in matches:
            if match.rule_id:
                by_rule[match.rule_id].append(match)

        results = []
        for rule in rules:
            rule_matches = by_rule.get(rule.id, [])
            accepted = sum(
                1 for m in rule_matches
                if m.status in (ReconciliationMatchStatus.APPROVED, ReconciliationMatchStatus.AUTO_APPROVED)
            )
            rejected = sum(1 for m in rule_matches if m.status == ReconciliationMatchStatus.REJECTED)
            reviewed = accepted + rejected
            results.append(RuleEffectiveness(
                rule_id=rule.id,
                rule_name=rule.rule_name,
                matches_found=len(rule_matches),
                accuracy_rate=accepted / reviewed if reviewed else 0.0,
                false_positive_rate=rejected / reviewed if reviewed else 0.0,
                usage_count=rule.usage_count,
                last_used=rule.last_used,
            ))
        results.sort(key=lambda r: r.matches_found, reverse=True)
        return results

    def _processing_performance(self) -> ProcessingPerformance:
        if self.monitor is None:
            return ProcessingPerformance(0.0, 0.0, 0, 0.0, 0.0)
        return ProcessingPerformance(
            average_processing_time=self.monitor.average_duration(),
            p95_processing_time=self.monitor.p95_duration(),
            total_operations=len(self.monitor),
            error_rate=self.monitor.error_rate(),
            cache_hit_rate=self.monitor.cache_hit_rate(),
        )

    def _cost_savings(self, matches: Sequence[ReconciliationMatch]) -> CostSavings:
        auto_approved = sum(1 for m in matches if m.status == ReconciliationMatchStatus.AUTO_APPROVED)
        hours = auto_approved * self.settings.minutes_saved_per_match / 60
        return CostSavings(
            manual_hours_saved=hours,
            cost_per_hour=self.settings.cost_per_hour,
            total_savings=hours * self.settings.cost_per_hour,
            auto_approved_matches=auto_approved,
        )

    def _recommendations(
        self,
        sessions: Sequence[ReconciliationSession],
        patterns: Sequence[PatternData],
        effectiveness: Sequence[RuleEffectiveness],
        performance: ProcessingPerformance,
    ) -> List[AnalyticsRecommendation]:
        recommendations = []

        rates = [
            s.reconciliation_rate for s in sessions
            if s.status != ReconciliationSessionStatus.CANCELLED
        ]
        if rates:
            average_rate = float(np.mean(rates))
            if average_rate < self.settings.low_reconciliation_rate:
                recommendations.append(AnalyticsRecommendation(
                    type="rule_creation",
                    title="Raise the automatic match rate",
                    description=f"Sessions average a {average_rate:.1f}% reconciliation rate.",
                    impact=8,
                    effort=5,
                    priority=1,
                    implementation_steps=[
                        "Review the most frequent outstanding descriptions",
                        "Add rules with amount and date tolerances",
                    ],
                ))

        for rule in effectiveness:
            if rule.false_positive_rate > 0.2:
                recommendations.append(AnalyticsRecommendation(
                    type="rule_modification",
                    title=f"Tighten rule '{rule.rule_name}'",
                    description=f"{rule.false_positive_rate:.0%} of its reviewed matches were rejected.",
                    impact=6,
                    effort=3,
                    priority=2,
                    implementation_steps=[
                        "Raise min_confidence or the auto-approval threshold",
                        "Add description or reference criteria",
                    ],
                ))

        if patterns:
            top = patterns[0]
            recommendations.append(AnalyticsRecommendation(
                type="process_improvement",
                title=f"Address recurring {top.pattern.replace('_', ' ')} exceptions",
                description=f"Seen {top.frequency} time(s).",
                impact=5,
                effort=4,
                priority=3,
                implementation_steps=[top.suggested_rule],
            ))

        if performance.error_rate > 0.05:
            recommendations.append(AnalyticsRecommendation(
                type="process_improvement",
                title="Investigate failing operations",
                description=f"{performance.error_rate:.0%} of tracked operations failed.",
                impact=7,
                effort=4,
                priority=2,
                implementation_steps=["Inspect error logs for the failing operations"],
            ))

        recommendations.sort(key=lambda r: r.priority)
        return recommendations
