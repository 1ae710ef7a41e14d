"""
FastAPI application exposing the bank reconciliation service.

Caller identity travels in headers: X-User-Id, X-Organization-Id and a
comma-separated X-Permissions list. Every route returns the service envelope;
the HTTP status is derived from its first error code.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import get_settings
from .errors import ErrorCode
from .models import UserContext
from .repository import InMemoryRepository
from .responses import ServiceResponse
from .service import BankReconciliationService
from .utils.logging_setup import configure_logging

logger = structlog.get_logger()

STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.INVALID_FILE_FORMAT: 422,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.BANK_ACCOUNT_NOT_FOUND: 404,
    ErrorCode.STATEMENT_NOT_FOUND: 404,
    ErrorCode.TRANSACTION_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.MATCH_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_STATEMENT: 409,
    ErrorCode.TIMEOUT_ERROR: 504,
}


# Request models
class ImportStatementRequest(BaseModel):
    statement: Dict[str, Any]
    options: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class ImportStatementFileRequest(BaseModel):
    content: str
    options: Optional[Dict[str, Any]] = None
    statement_fields: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class ReconcileRequest(BaseModel):
    statement_id: str
    options: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class MatchStatusRequest(BaseModel):
    status: str
    notes: Optional[str] = None


def status_for(response: ServiceResponse) -> int:
    if response.success:
        return 200
    return STATUS_BY_CODE.get(response.errors[0].code, 500)


def envelope(response: ServiceResponse) -> JSONResponse:
    return JSONResponse(status_code=status_for(response), content=response.to_dict())


def get_service(request: Request) -> BankReconciliationService:
    return request.app.state.service


def get_user(
    x_user_id: str = Header(...),
    x_organization_id: str = Header(...),
    x_permissions: str = Header(default=""),
) -> UserContext:
    permissions = frozenset(p.strip() for p in x_permissions.split(",") if p.strip())
    return UserContext(user_id=x_user_id, organization_id=x_organization_id, permissions=permissions)


def create_app(service: Optional[BankReconciliationService] = None) -> FastAPI:
    """Build the application around a service; defaults to an in-memory store."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.app_log_level)
        logger.info("Starting bank reconciliation API", env=settings.app_env)
        yield
        logger.info("Shutting down bank reconciliation API")

    app = FastAPI(
        title="Bank Reconciliation",
        description="Bank statement import and ledger reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service or BankReconciliationService(InMemoryRepository(), settings=settings)

    @app.get("/health")
    async def health_check(svc: BankReconciliationService = Depends(get_service)):
        """Health check endpoint."""
        response = await svc.health_check()
        status = 200 if response.success and response.data["status"] == "healthy" else 503
        return JSONResponse(status_code=status, content=response.to_dict())

    # ---- Bank accounts ----

    @app.post("/api/organizations/{organization_id}/accounts")
    async def create_bank_account(
        organization_id: str,
        account: Dict[str, Any],
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.create_bank_account(organization_id, account, user))

    @app.get("/api/organizations/{organization_id}/accounts")
    async def list_bank_accounts(
        organization_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        is_active: Optional[bool] = None,
        account_type: Optional[str] = None,
        currency: Optional[str] = None,
        search: Optional[str] = None,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        filters = {
            name: value
            for name, value in (
                ("is_active", is_active),
                ("account_type", account_type),
                ("currency", currency),
                ("search", search),
            )
            if value is not None
        }
        return envelope(await svc.list_bank_accounts(organization_id, user, page, limit, filters))

    @app.get("/api/accounts/{account_id}")
    async def get_bank_account(
        account_id: str,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_bank_account(account_id, user))

    # ---- Statements and reconciliation ----

    @app.post("/api/accounts/{account_id}/statements")
    async def import_bank_statement(
        account_id: str,
        request: ImportStatementRequest,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.import_bank_statement(
            account_id, request.statement, request.options, user, timeout=request.timeout_seconds
        ))

    @app.post("/api/accounts/{account_id}/statements/file")
    async def import_bank_statement_file(
        account_id: str,
        request: ImportStatementFileRequest,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.import_bank_statement_file(
            account_id,
            request.content,
            request.options,
            user,
            statement_fields=request.statement_fields,
            timeout=request.timeout_seconds,
        ))

    @app.post("/api/accounts/{account_id}/reconciliations")
    async def perform_reconciliation(
        account_id: str,
        request: ReconcileRequest,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.perform_reconciliation(
            account_id, request.statement_id, request.options, user, timeout=request.timeout_seconds
        ))

    @app.get("/api/organizations/{organization_id}/reconciliations")
    async def get_reconciliation_history(
        organization_id: str,
        account_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_reconciliation_history(
            organization_id, user, account_id, start_date, end_date, status, page, limit
        ))

    @app.get("/api/sessions/{session_id}/matches")
    async def get_reconciliation_matches(
        session_id: str,
        status: Optional[str] = None,
        match_type: Optional[str] = None,
        min_confidence: Optional[float] = None,
        page: int = 1,
        limit: Optional[int] = None,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_reconciliation_matches(
            session_id, user, status, match_type, min_confidence, page, limit
        ))

    @app.patch("/api/matches/{match_id}")
    async def update_match_status(
        match_id: str,
        request: MatchStatusRequest,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.update_match_status(match_id, request.status, user, request.notes))

    # ---- Rules and analytics ----

    @app.post("/api/organizations/{organization_id}/rules")
    async def create_reconciliation_rule(
        organization_id: str,
        rule: Dict[str, Any],
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.create_reconciliation_rule(organization_id, rule, user))

    @app.get("/api/organizations/{organization_id}/analytics")
    async def get_reconciliation_analytics(
        organization_id: str,
        period: str = "monthly",
        account_ids: Optional[List[str]] = Query(default=None),
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_reconciliation_analytics(organization_id, user, period, account_ids))

    # ---- Administration ----

    @app.post("/api/admin/cache/clear")
    async def clear_caches(
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.clear_caches(user))

    @app.get("/api/admin/cache/stats")
    async def get_cache_stats(
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_cache_stats(user))

    @app.get("/api/admin/metrics")
    async def get_performance_metrics(
        operation: Optional[str] = None,
        user: UserContext = Depends(get_user),
        svc: BankReconciliationService = Depends(get_service),
    ):
        return envelope(await svc.get_performance_metrics(user, operation))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
