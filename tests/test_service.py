"""
Tests for the service facade: envelopes, permissions, caching and workflows.
"""

import json
import pytest
import pytest_asyncio

from bankrec.errors import ErrorCode
from bankrec.models import (
    AuditAction,
    ReconciliationMatchStatus,
    ReconciliationSessionStatus,
)

from conftest import ORG_ID, statement_payload

ACCOUNT_DATA = {
    "account_number": "000987654",
    "account_name": "Payroll",
    "bank_name": "First Bank",
    "currency": "USD",
    "ledger_account_id": "ledger-cash",
}

RULE_DATA = {
    "rule_name": "Exact amount and date",
    "criteria": {"amount_match": True, "date_match": True, "min_confidence": 0.5},
    "priority": 80,
    "auto_approve": False,
}


async def create_account(service, user, **overrides):
    response = await service.create_bank_account(ORG_ID, {**ACCOUNT_DATA, **overrides}, user)
    assert response.success, response.errors
    return response.data


class TestBankAccounts:

    @pytest.mark.asyncio
    async def test_create_and_get(self, service, user):
        account = await create_account(service, user)

        first = await service.get_bank_account(account.id, user)
        second = await service.get_bank_account(account.id, user)

        assert first.success and first.data.account_name == "Payroll"
        assert first.data.created_by == user.user_id
        assert first.cache_hit is False
        assert second.cache_hit is True
        assert service.audit.get_entries(AuditAction.ACCOUNT_CREATED.value)

    @pytest.mark.asyncio
    async def test_cached_account_is_not_shared_with_callers(self, service, user):
        account = await create_account(service, user)

        first = await service.get_bank_account(account.id, user)
        first.data.account_name = "Changed by caller"
        second = await service.get_bank_account(account.id, user)

        assert second.cache_hit is True
        assert second.data.account_name == "Payroll"
        assert second.data is not first.data

    @pytest.mark.asyncio
    async def test_duplicate_account_rejected(self, service, user):
        await create_account(service, user)

        response = await service.create_bank_account(ORG_ID, ACCOUNT_DATA, user)

        assert not response.success
        assert response.errors[0].code == ErrorCode.VALIDATION_ERROR
        assert response.errors[0].message == "Bank account already exists"

    @pytest.mark.asyncio
    async def test_same_number_at_another_bank_allowed(self, service, user):
        await create_account(service, user)
        await create_account(service, user, bank_name="Second Bank")

    @pytest.mark.asyncio
    async def test_invalid_account_lists_every_issue(self, service, user):
        response = await service.create_bank_account(ORG_ID, {"account_number": "1", "currency": "US"}, user)

        assert not response.success
        assert set(response.error_codes) == {ErrorCode.VALIDATION_ERROR}
        assert len(response.errors) == 3

    @pytest.mark.asyncio
    async def test_permissions(self, service, user, reader, outsider):
        denied = await service.create_bank_account(ORG_ID, ACCOUNT_DATA, reader)
        foreign = await service.create_bank_account(ORG_ID, ACCOUNT_DATA, outsider)

        assert denied.error_codes == [ErrorCode.PERMISSION_DENIED]
        assert foreign.error_codes == [ErrorCode.PERMISSION_DENIED]

        account = await create_account(service, user)
        hidden = await service.get_bank_account(account.id, outsider)
        assert hidden.error_codes == [ErrorCode.BANK_ACCOUNT_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_list_pagination_and_filters(self, service, user):
        for i in range(5):
            await create_account(service, user, account_number=f"ACC-{i}", account_name=f"Account {i}")

        page = await service.list_bank_accounts(ORG_ID, user, page=2, limit=2)
        capped = await service.list_bank_accounts(ORG_ID, user, limit=500)
        searched = await service.list_bank_accounts(ORG_ID, user, filters={"search": "account 3"})
        bad_page = await service.list_bank_accounts(ORG_ID, user, page=0)

        assert page.data["total"] == 5
        assert len(page.data["accounts"]) == 2
        assert page.data["page"] == 2
        assert capped.data["limit"] == 100
        assert [a.account_name for a in searched.data["accounts"]] == ["Account 3"]
        assert bad_page.error_codes == [ErrorCode.VALIDATION_ERROR]


class TestStatementImport:

    @pytest.mark.asyncio
    async def test_import_with_row_errors(self, service, user):
        account = await create_account(service, user)
        rows = [
            {"date": "2024-01-05", "description": "Invoice 1 payment", "amount": "150.00"},
            {"date": "2024-01-06", "description": "Missing amount"},
        ]

        response = await service.import_bank_statement(account.id, statement_payload(rows=rows), None, user)

        assert response.success
        assert response.metadata["records_processed"] == 1
        (warning,) = response.warnings
        assert warning.code == ErrorCode.VALIDATION_ERROR
        assert warning.severity == "warning"
        assert warning.message == "1 transaction validation errors"
        assert warning.details[0].startswith("Row 2:")

    @pytest.mark.asyncio
    async def test_duplicate_statement_warning(self, service, user):
        account = await create_account(service, user)
        await service.import_bank_statement(account.id, statement_payload(), None, user)

        response = await service.import_bank_statement(account.id, statement_payload(), None, user)

        assert response.success
        assert response.data.duplicate
        assert [w.code for w in response.warnings] == [ErrorCode.DUPLICATE_STATEMENT]

    @pytest.mark.asyncio
    async def test_duplicate_statement_error(self, service, user):
        account = await create_account(service, user)
        await service.import_bank_statement(account.id, statement_payload(), None, user)

        response = await service.import_bank_statement(
            account.id, statement_payload(), {"skip_duplicates": False}, user
        )

        assert response.error_codes == [ErrorCode.DUPLICATE_STATEMENT]

    @pytest.mark.asyncio
    async def test_import_into_unknown_account(self, service, user):
        response = await service.import_bank_statement("nope", statement_payload(), None, user)
        assert response.error_codes == [ErrorCode.BANK_ACCOUNT_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_foreign_account_reported_as_not_found(self, service, user, outsider):
        account = await create_account(service, user)

        imported = await service.import_bank_statement(account.id, statement_payload(), None, outsider)
        reconciled = await service.perform_reconciliation(account.id, "any-statement", None, outsider)

        assert imported.error_codes == [ErrorCode.BANK_ACCOUNT_NOT_FOUND]
        assert reconciled.error_codes == [ErrorCode.BANK_ACCOUNT_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_import_csv_file(self, service, user):
        account = await create_account(service, user)
        content = (
            "Date,Description,Amount,Teller\n"
            "2024-01-05,Invoice 1 payment,150.00,A\n"
            "2024-01-06,ATM withdrawal,-60.00,B\n"
        )

        response = await service.import_bank_statement_file(
            account.id,
            content,
            {"file_format": "csv"},
            user,
            statement_fields={"statement_number": "CSV-1", "statement_date": "2024-01-31"},
        )

        assert response.success
        assert response.metadata["records_processed"] == 2
        assert response.warnings[0].severity == "info"
        assert response.warnings[0].message == "Ignored columns: Teller"
        assert [t.category for t in response.data.transactions] == ["payment", "withdrawal"]

    @pytest.mark.asyncio
    async def test_unsupported_file_format(self, service, user):
        account = await create_account(service, user)

        response = await service.import_bank_statement_file(account.id, "<OFX/>", {"file_format": "ofx"}, user)

        assert response.error_codes == [ErrorCode.INVALID_FILE_FORMAT]

    @pytest.mark.asyncio
    async def test_import_timeout(self, service, user):
        account = await create_account(service, user)

        response = await service.import_bank_statement(
            account.id, statement_payload(), None, user, timeout=0
        )

        assert response.error_codes == [ErrorCode.TIMEOUT_ERROR]


class TestReconciliationWorkflow:
    """Import, reconcile, review and report."""

    @pytest_asyncio.fixture
    async def reconciled(self, service, repository, user, make_ledger_entry):
        account = await create_account(service, user)
        imported = await service.import_bank_statement(account.id, statement_payload(), None, user)
        repository.add_ledger_entries([
            make_ledger_entry("-150.00", on=imported.data.transactions[0].date),
        ])
        await service.create_reconciliation_rule(ORG_ID, RULE_DATA, user)

        response = await service.perform_reconciliation(
            account.id, imported.data.statement.id, {"confidence_threshold": 0.5}, user
        )
        assert response.success, response.errors
        return account, response

    @pytest.mark.asyncio
    async def test_perform_reconciliation(self, reconciled):
        account, response = reconciled
        outcome = response.data

        assert outcome.session.status == ReconciliationSessionStatus.COMPLETED
        assert outcome.session.matched_transactions == 1
        assert response.metadata["records_processed"] == 2
        assert response.metadata["reconciliation_stats"].matches_found == 1
        assert response.warnings[0].code == ErrorCode.MATCHING_ERROR
        assert response.warnings[0].message.endswith("reconciliation exceptions found")

    @pytest.mark.asyncio
    async def test_history_and_matches(self, service, reconciled, user, reader):
        account, response = reconciled
        session_id = response.data.session.id

        history = await service.get_reconciliation_history(ORG_ID, reader, account_id=account.id)
        completed = await service.get_reconciliation_history(ORG_ID, reader, status="completed")
        cancelled = await service.get_reconciliation_history(ORG_ID, reader, status="cancelled")
        bad_status = await service.get_reconciliation_history(ORG_ID, reader, status="finished")

        assert [s.id for s in history.data["sessions"]] == [session_id]
        assert completed.data["total"] == 1
        assert cancelled.data["total"] == 0
        assert bad_status.error_codes == [ErrorCode.VALIDATION_ERROR]

        matches = await service.get_reconciliation_matches(session_id, reader)
        filtered = await service.get_reconciliation_matches(session_id, reader, min_confidence=1.01)
        assert matches.data["total"] == 1
        assert matches.data["matches"][0].status == ReconciliationMatchStatus.PENDING
        assert filtered.data["total"] == 0

    @pytest.mark.asyncio
    async def test_matches_of_unknown_or_foreign_session(self, service, reconciled, outsider, user):
        _, response = reconciled

        missing = await service.get_reconciliation_matches("missing", user)
        foreign = await service.get_reconciliation_matches(response.data.session.id, outsider)

        assert missing.error_codes == [ErrorCode.SESSION_NOT_FOUND]
        assert foreign.error_codes == [ErrorCode.SESSION_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_review_match(self, service, repository, reconciled, user, reader):
        _, response = reconciled
        match = response.data.matches[0]

        denied = await service.update_match_status(match.id, "approved", reader)
        approved = await service.update_match_status(match.id, "approved", user, notes="checked")
        reopened = await service.update_match_status(match.id, "rejected", user)
        missing = await service.update_match_status("missing", "approved", user)

        assert denied.error_codes == [ErrorCode.PERMISSION_DENIED]
        assert approved.success
        assert approved.data.status == ReconciliationMatchStatus.APPROVED
        assert approved.data.reviewed_by == user.user_id
        assert approved.data.notes == "checked"
        assert reopened.error_codes == [ErrorCode.VALIDATION_ERROR]
        assert missing.error_codes == [ErrorCode.MATCH_NOT_FOUND]
        # Reviewer decisions do not reconcile the bank line
        assert not repository.transactions[match.bank_transaction_id].is_reconciled

    @pytest.mark.asyncio
    async def test_analytics(self, service, reconciled, reader):
        first = await service.get_reconciliation_analytics(ORG_ID, reader)
        second = await service.get_reconciliation_analytics(ORG_ID, reader)
        invalid = await service.get_reconciliation_analytics(ORG_ID, reader, period="hourly")

        assert first.success and not first.cache_hit
        assert second.cache_hit
        assert first.data.reconciliation_trends[0].matched_transactions == 1
        assert invalid.error_codes == [ErrorCode.VALIDATION_ERROR]

    @pytest.mark.asyncio
    async def test_reconcile_unknown_statement(self, service, user):
        account = await create_account(service, user)

        response = await service.perform_reconciliation(account.id, "missing", None, user)

        assert response.error_codes == [ErrorCode.STATEMENT_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_invalid_rule(self, service, user):
        response = await service.create_reconciliation_rule(ORG_ID, {"rule_name": "", "priority": 101}, user)

        assert not response.success
        assert len(response.errors) == 2


class TestUtilities:

    @pytest.mark.asyncio
    async def test_cache_administration(self, service, user, reader):
        account = await create_account(service, user)
        await service.get_bank_account(account.id, user)

        stats = await service.get_cache_stats(reader)
        denied = await service.clear_caches(reader)
        cleared = await service.clear_caches(user)

        assert stats.data["size"] >= 1
        assert denied.error_codes == [ErrorCode.PERMISSION_DENIED]
        assert cleared.success
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_performance_metrics(self, service, user):
        await create_account(service, user)
        await service.get_bank_account("missing", user)

        overall = await service.get_performance_metrics(user)
        creates = await service.get_performance_metrics(user, "create_bank_account")

        assert "create_bank_account" in overall.data["operations"]
        assert "get_bank_account" in overall.data["operations"]
        assert creates.data["total_operations"] == 1
        assert creates.data["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_processing_errors(self, service, user, monkeypatch):
        async def broken(*args, **kwargs):
            raise KeyError("boom")

        monkeypatch.setattr(service.repository, "list_accounts", broken)

        response = await service.list_bank_accounts(ORG_ID, user)

        assert response.error_codes == [ErrorCode.PROCESSING_ERROR]

    @pytest.mark.asyncio
    async def test_health_check(self, service, repository):
        healthy = await service.health_check()
        repository.available = False
        degraded = await service.health_check()

        assert healthy.data["status"] == "healthy"
        assert healthy.data["checks"] == {"database": True, "cache": True, "performance": True}
        assert degraded.data["status"] == "unhealthy"
        assert degraded.data["checks"]["database"] is False

    @pytest.mark.asyncio
    async def test_envelope_serialization_and_audit_export(self, service, user, tmp_path):
        response = await service.create_bank_account(ORG_ID, ACCOUNT_DATA, user)

        payload = response.to_dict()
        assert payload["success"] is True
        assert payload["data"]["account_type"] == "checking"
        json.dumps(payload)

        path = service.audit.export_to_file(tmp_path / "audit.json")
        exported = json.loads(path.read_text())
        assert exported["total_entries"] == 1
        assert service.audit.summary()["action_counts"] == {"account_created": 1}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
