"""
Public service facade.

Every operation checks permissions first, runs under the performance monitor
and returns a ServiceResponse. Exceptions never escape: engine errors become
envelope entries carrying their ErrorCode and anything unexpected becomes a
PROCESSING_ERROR.
"""

import copy
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import structlog

from .config import Settings, get_settings
from .errors import (
    BankReconciliationError,
    ErrorCode,
    NotFoundError,
    ValidationFailedError,
)
from .ingestion import StatementImportPipeline, parse_statement_content
from .ingestion.importer import ImportResult
from .models import (
    AuditAction,
    BankAccount,
    ReconciliationMatchStatus,
    ReconciliationMatchType,
    ReconciliationSessionStatus,
    UserContext,
)
from .models.schemas import (
    BankAccountInput,
    ReconciliationRuleInput,
    StatementImportOptions,
    parse_input,
)
from .permissions import require_permission
from .reconciliation import (
    AnalyticsGenerator,
    ReconciliationOrchestrator,
    check_match_transition,
)
from .repository import ReconciliationRepository
from .responses import ServiceError, ServiceResponse
from .utils.audit_logger import AuditLogger
from .utils.cache import CacheKey, ReconciliationCache
from .utils.deadline import deadline_after
from .utils.performance import PerformanceMonitor

logger = structlog.get_logger()

HEALTH_CHECK_KEY = "health_check"


class BankReconciliationService:
    """
    Bank reconciliation operations for one storage backend.

    Collaborators are injected; anything not supplied is built from settings.
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        cache: Optional[ReconciliationCache] = None,
        monitor: Optional[PerformanceMonitor] = None,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.cache = cache or ReconciliationCache(
            max_size=self.settings.cache_max_size,
            default_ttl=self.settings.cache_default_ttl_seconds,
            eviction_margin=self.settings.cache_eviction_margin,
            ttl_by_type=self.settings.cache_ttls,
        )
        self.monitor = monitor or PerformanceMonitor(self.settings.metrics_max_entries)
        self.audit = audit or AuditLogger()

        self.importer = StatementImportPipeline(repository, self.settings)
        self.orchestrator = ReconciliationOrchestrator(
            repository,
            cache=self.cache,
            settings=self.settings,
            audit=self.audit,
        )
        self.analytics = AnalyticsGenerator(repository, self.cache, self.monitor, self.settings)

    # ===== Plumbing =====

    async def _execute(
        self,
        operation: str,
        body: Callable[[], Awaitable[ServiceResponse]],
        track: bool = True,
    ) -> ServiceResponse:
        try:
            if not track:
                return await body()
            return await self.monitor.track(
                operation,
                body,
                cache_hit=lambda r: r.cache_hit,
                records_processed=lambda r: r.metadata.get("records_processed"),
            )
        except BankReconciliationError as e:
            logger.warning(
                "Operation failed",
                operation=operation,
                code=e.code.value,
                error=e.message,
            )
            return ServiceResponse.from_exception(e)
        except Exception as e:
            logger.exception("Unexpected operation failure", operation=operation)
            return ServiceResponse.fail(ServiceError(
                code=ErrorCode.PROCESSING_ERROR,
                message=f"{operation} failed: {e}",
            ))

    def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed", key=key, error=str(e))
            return None

    def _cache_set(self, key: str, value: Any, entity_type: str) -> None:
        try:
            self.cache.set(key, value, self.cache.ttl_for(entity_type))
        except Exception as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    def _cache_invalidate(self, *patterns: str) -> None:
        for pattern in patterns:
            try:
                self.cache.invalidate(pattern)
            except Exception as e:
                logger.warning("Cache invalidation failed", pattern=pattern, error=str(e))

    async def _load_account(self, account_id: str, user: UserContext) -> Tuple[BankAccount, bool]:
        """Account owned by the caller's organization, and whether it came from cache."""
        key = ReconciliationCache.generate_key(CacheKey(
            type="bank_account",
            organization_id=user.organization_id,
            account_id=account_id,
        ))
        cached = self._cache_get(key)
        if cached is not None:
            return copy.deepcopy(cached), True

        account = await self.repository.get_account(account_id)
        if account is None or account.organization_id != user.organization_id:
            raise NotFoundError(f"Bank account not found: {account_id}")

        self._cache_set(key, copy.deepcopy(account), "bank_account")
        return account, False

    def _page(self, page: int, limit: Optional[int]) -> Tuple[int, int, int]:
        """(page, limit, offset) with limit defaulted and capped."""
        if page < 1:
            raise ValidationFailedError("Invalid page", details=["page: must be 1 or greater"])
        if limit is None:
            limit = self.settings.default_page_size
        if limit < 1:
            raise ValidationFailedError("Invalid limit", details=["limit: must be 1 or greater"])
        limit = min(limit, self.settings.max_page_size)
        return page, limit, (page - 1) * limit

    # ===== Bank accounts =====

    async def create_bank_account(
        self,
        organization_id: str,
        account_data: Union[BankAccountInput, Dict[str, Any]],
        user: UserContext,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "write", organization_id, "create bank account")
            account_input = parse_input(BankAccountInput, account_data, "bank account")

            existing = await self.repository.find_account_by_number(
                organization_id, account_input.account_number
            )
            if existing is not None and existing.bank_name == account_input.bank_name:
                raise ValidationFailedError("Bank account already exists")

            account = await self.repository.create_account(
                account_input.to_account(organization_id, user.user_id)
            )
            self._cache_invalidate(f"bank_account:{organization_id}:")
            self.audit.record(
                AuditAction.ACCOUNT_CREATED,
                f"Bank account {account.account_name} created",
                organization_id=organization_id,
                actor=user.user_id,
                account_id=account.id,
            )
            return ServiceResponse.ok(account)

        return await self._execute("create_bank_account", body)

    async def get_bank_account(self, account_id: str, user: UserContext) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", user.organization_id, "view bank account")
            account, hit = await self._load_account(account_id, user)
            return ServiceResponse.ok(account, cache_hit=hit)

        return await self._execute("get_bank_account", body)

    async def list_bank_accounts(
        self,
        organization_id: str,
        user: UserContext,
        page: int = 1,
        limit: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", organization_id, "list bank accounts")
            page_no, page_size, offset = self._page(page, limit)
            accounts, total = await self.repository.list_accounts(
                organization_id, filters=filters, offset=offset, limit=page_size
            )
            return ServiceResponse.ok(
                {"accounts": accounts, "total": total, "page": page_no, "limit": page_size},
                records_processed=len(accounts),
            )

        return await self._execute("list_bank_accounts", body)

    # ===== Statements =====

    async def import_bank_statement(
        self,
        account_id: str,
        statement_data: Dict[str, Any],
        options: Union[StatementImportOptions, Dict[str, Any], None],
        user: UserContext,
        timeout: Optional[float] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "write", user.organization_id, "import bank statement")
            return await self._import(account_id, statement_data, options, user, timeout)

        return await self._execute("import_bank_statement", body)

    async def import_bank_statement_file(
        self,
        account_id: str,
        content: Union[str, bytes],
        options: Union[StatementImportOptions, Dict[str, Any], None],
        user: UserContext,
        statement_fields: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ServiceResponse:
        """Parse CSV or JSON statement content, then import it."""
        async def body() -> ServiceResponse:
            require_permission(user, "write", user.organization_id, "import bank statement")
            import_options = parse_input(StatementImportOptions, options, "import options")
            parsed = parse_statement_content(content, import_options, statement_fields)
            notes = [
                ServiceError(code=ErrorCode.VALIDATION_ERROR, message=w, severity="info")
                for w in parsed.warnings
            ]
            return await self._import(
                account_id, parsed.as_statement_data(), import_options, user, timeout, notes
            )

        return await self._execute("import_bank_statement_file", body)

    async def _import(
        self,
        account_id: str,
        statement_data: Dict[str, Any],
        options: Union[StatementImportOptions, Dict[str, Any], None],
        user: UserContext,
        timeout: Optional[float],
        extra_warnings: Optional[List[ServiceError]] = None,
    ) -> ServiceResponse:
        account, _ = await self._load_account(account_id, user)
        result: ImportResult = await self.importer.import_statement(
            account.id, statement_data, options, user, deadline=deadline_after(timeout)
        )

        warnings = list(extra_warnings or [])
        if result.duplicate:
            warnings.append(ServiceError.warning(ErrorCode.DUPLICATE_STATEMENT, "Duplicate statement skipped"))
            self.audit.record(
                AuditAction.DUPLICATE_STATEMENT_SKIPPED,
                "Duplicate statement skipped",
                organization_id=account.organization_id,
                actor=user.user_id,
                statement_id=result.statement.id,
            )
            return ServiceResponse.ok(result, warnings=warnings, records_processed=0, duplicate=True)

        if result.validation_errors:
            warnings.append(ServiceError.warning(
                ErrorCode.VALIDATION_ERROR,
                f"{len(result.validation_errors)} transaction validation errors",
                details=list(result.validation_errors),
            ))
        for message in result.warnings:
            warnings.append(ServiceError.warning(ErrorCode.VALIDATION_ERROR, message))

        self._cache_invalidate(f":{account.id}:")
        self.audit.record(
            AuditAction.STATEMENT_IMPORTED,
            f"Statement {result.statement.statement_number} imported",
            organization_id=account.organization_id,
            actor=user.user_id,
            transaction_ids=[t.id for t in result.transactions],
            statement_id=result.statement.id,
            errors=len(result.validation_errors),
        )
        return ServiceResponse.ok(result, warnings=warnings, records_processed=result.records_processed)

    # ===== Reconciliation =====

    async def perform_reconciliation(
        self,
        account_id: str,
        statement_id: str,
        options: Optional[Dict[str, Any]],
        user: UserContext,
        timeout: Optional[float] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "write", user.organization_id, "perform reconciliation")
            account, _ = await self._load_account(account_id, user)
            outcome = await self.orchestrator.reconcile(
                account, statement_id, options, user, deadline=deadline_after(timeout)
            )

            warnings = []
            exceptions = outcome.summary.exceptions
            if exceptions:
                warnings.append(ServiceError.warning(
                    ErrorCode.MATCHING_ERROR,
                    f"{len(exceptions)} reconciliation exceptions found",
                    details=list(exceptions),
                ))
            return ServiceResponse.ok(
                outcome,
                warnings=warnings,
                records_processed=outcome.session.total_transactions,
                reconciliation_stats=outcome.stats,
            )

        return await self._execute("perform_reconciliation", body)

    async def get_reconciliation_analytics(
        self,
        organization_id: str,
        user: UserContext,
        period: str = "monthly",
        account_ids: Optional[Sequence[str]] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", organization_id, "view reconciliation analytics")
            analytics, hit = await self.analytics.generate(organization_id, period, account_ids)
            return ServiceResponse.ok(analytics, cache_hit=hit)

        return await self._execute("get_reconciliation_analytics", body)

    async def create_reconciliation_rule(
        self,
        organization_id: str,
        rule_data: Union[ReconciliationRuleInput, Dict[str, Any]],
        user: UserContext,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "write", organization_id, "create reconciliation rule")
            rule_input = parse_input(ReconciliationRuleInput, rule_data, "reconciliation rule")
            rule = await self.repository.create_rule(rule_input.to_rule(organization_id, user.user_id))
            self._cache_invalidate(f"rule:{organization_id}:")
            self.audit.record(
                AuditAction.RULE_CREATED,
                f"Reconciliation rule {rule.rule_name} created",
                organization_id=organization_id,
                actor=user.user_id,
                rule_id=rule.id,
                priority=rule.priority,
            )
            return ServiceResponse.ok(rule)

        return await self._execute("create_reconciliation_rule", body)

    async def get_reconciliation_history(
        self,
        organization_id: str,
        user: UserContext,
        account_id: Optional[str] = None,
        start_date: Optional[Union[date, datetime]] = None,
        end_date: Optional[Union[date, datetime]] = None,
        status: Optional[Union[ReconciliationSessionStatus, str]] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", organization_id, "view reconciliation history")
            page_no, page_size, offset = self._page(page, limit)
            session_status = _coerce_enum(ReconciliationSessionStatus, status, "status")

            sessions, total = await self.repository.list_sessions(
                organization_id,
                account_ids=[account_id] if account_id else None,
                status=session_status,
                started_after=_as_datetime(start_date),
                started_before=_as_datetime(end_date, end_of_day=True),
                offset=offset,
                limit=page_size,
            )
            return ServiceResponse.ok(
                {"sessions": sessions, "total": total, "page": page_no, "limit": page_size},
                records_processed=len(sessions),
            )

        return await self._execute("get_reconciliation_history", body)

    async def get_reconciliation_matches(
        self,
        session_id: str,
        user: UserContext,
        status: Optional[Union[ReconciliationMatchStatus, str]] = None,
        match_type: Optional[Union[ReconciliationMatchType, str]] = None,
        min_confidence: Optional[float] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", user.organization_id, "view reconciliation matches")
            page_no, page_size, offset = self._page(page, limit)
            match_status = _coerce_enum(ReconciliationMatchStatus, status, "status")
            kind = _coerce_enum(ReconciliationMatchType, match_type, "match_type")

            session = await self.repository.get_session(session_id)
            if session is None or session.organization_id != user.organization_id:
                raise NotFoundError(
                    f"Reconciliation session not found: {session_id}",
                    code=ErrorCode.SESSION_NOT_FOUND,
                )

            matches = await self.repository.list_matches(session_ids=[session_id], status=match_status)
            if kind is not None:
                matches = [m for m in matches if m.match_type == kind]
            if min_confidence is not None:
                matches = [m for m in matches if m.confidence_score >= min_confidence]
            matches.sort(key=lambda m: m.confidence_score, reverse=True)

            page_rows = matches[offset:offset + page_size]
            return ServiceResponse.ok(
                {"matches": page_rows, "total": len(matches), "page": page_no, "limit": page_size},
                records_processed=len(page_rows),
            )

        return await self._execute("get_reconciliation_matches", body)

    async def update_match_status(
        self,
        match_id: str,
        status: Union[ReconciliationMatchStatus, str],
        user: UserContext,
        notes: Optional[str] = None,
    ) -> ServiceResponse:
        """
        Record a reviewer decision on a match.

        The bank transaction is not modified here; only a reconciliation run
        marks lines reconciled.
        """
        async def body() -> ServiceResponse:
            require_permission(user, "write", user.organization_id, "update match status")
            new_status = _coerce_enum(ReconciliationMatchStatus, status, "status")
            if new_status is None:
                raise ValidationFailedError("Invalid status", details=["status: required"])

            match = await self.repository.get_match(match_id)
            session = await self.repository.get_session(match.session_id) if match and match.session_id else None
            if match is None or session is None or session.organization_id != user.organization_id:
                raise NotFoundError(
                    f"Reconciliation match not found: {match_id}",
                    code=ErrorCode.MATCH_NOT_FOUND,
                )

            check_match_transition(match.status, new_status)
            updated = await self.repository.update_match_status(
                match_id, new_status, reviewed_by=user.user_id, notes=notes
            )
            self._cache_invalidate(f"match:{user.organization_id}:", f"analytics:{user.organization_id}:")
            self.audit.record(
                AuditAction.MATCH_STATUS_UPDATED,
                f"Match status changed from {match.status.value} to {new_status.value}",
                organization_id=user.organization_id,
                session_id=session.id,
                transaction_ids=[updated.bank_transaction_id, updated.ledger_transaction_id],
                actor=user.user_id,
            )
            return ServiceResponse.ok(updated)

        return await self._execute("update_match_status", body)

    # ===== Utilities =====

    async def clear_caches(self, user: UserContext) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "admin", user.organization_id, "clear caches")
            self.cache.invalidate_all()
            logger.info("Caches cleared", user_id=user.user_id)
            return ServiceResponse.ok({"cleared": True})

        return await self._execute("clear_caches", body, track=False)

    async def get_cache_stats(self, user: UserContext) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", user.organization_id, "view cache statistics")
            return ServiceResponse.ok(self.cache.get_stats())

        return await self._execute("get_cache_stats", body, track=False)

    async def get_performance_metrics(
        self,
        user: UserContext,
        operation: Optional[str] = None,
    ) -> ServiceResponse:
        async def body() -> ServiceResponse:
            require_permission(user, "read", user.organization_id, "view performance metrics")
            return ServiceResponse.ok(self.monitor.summary(operation))

        return await self._execute("get_performance_metrics", body, track=False)

    async def health_check(self) -> ServiceResponse:
        """Database, cache and monitor liveness. Needs no caller context."""
        async def body() -> ServiceResponse:
            checks = {"database": False, "cache": False, "performance": False}
            try:
                checks["database"] = bool(await self.repository.ping())
            except Exception as e:
                logger.warning("Database health check failed", error=str(e))
            try:
                self.cache.set(HEALTH_CHECK_KEY, True, 1.0)
                checks["cache"] = self.cache.get(HEALTH_CHECK_KEY) is True
            except Exception as e:
                logger.warning("Cache health check failed", error=str(e))
            try:
                self.monitor.summary()
                checks["performance"] = True
            except Exception as e:
                logger.warning("Performance monitor health check failed", error=str(e))

            return ServiceResponse.ok({
                "status": "healthy" if all(checks.values()) else "unhealthy",
                "checks": checks,
                "timestamp": datetime.utcnow(),
            })

        return await self._execute("health_check", body, track=False)


def _coerce_enum(enum_cls, value, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationFailedError(
            f"Invalid {field_name}",
            details=[f"{field_name}: must be one of {allowed}"],
        )


def _as_datetime(value: Optional[Union[date, datetime]], end_of_day: bool = False) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if end_of_day:
        return datetime.combine(value, datetime.max.time())
    return datetime.combine(value, datetime.min.time())
