"""
Audit logging for reconciliation decisions.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

import structlog

from ..models import AuditAction, AuditEntry, to_primitive

logger = structlog.get_logger()


class AuditLogger:
    """
    Audit trail of imports, sessions and match decisions.
    Entries are kept in memory, mirrored to structlog and exportable to JSON.
    """

    def __init__(self, trail_id: str = "bankrec"):
        self.trail_id = trail_id
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        """Append an entry and mirror it to the application log."""
        self.entries.append(entry)

        emit = logger.info if entry.success else logger.warning
        emit(
            entry.message,
            audit_trail=self.trail_id,
            action=entry.action.value,
            organization_id=entry.organization_id,
            session_id=entry.session_id,
            transaction_count=len(entry.transaction_ids),
            actor=entry.actor,
            error=entry.error_message,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        organization_id: Optional[str] = None,
        session_id: Optional[str] = None,
        transaction_ids: Optional[List[str]] = None,
        actor: str = "system",
        success: bool = True,
        error_message: Optional[str] = None,
        **details,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            organization_id=organization_id,
            session_id=session_id,
            transaction_ids=list(transaction_ids or []),
            actor=actor,
            message=message,
            details=details,
            success=success,
            error_message=error_message,
        )
        self.log(entry)
        return entry

    def get_entries(
        self,
        action_filter: Optional[Union[AuditAction, str]] = None,
        session_id: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Entries in recording order, optionally narrowed by action, session or outcome."""
        action = AuditAction(action_filter) if action_filter else None
        return [
            e for e in self.entries
            if (action is None or e.action == action)
            and (session_id is None or e.session_id == session_id)
            and (e.success or not success_only)
        ]

    def export_to_file(self, output_path: Path) -> Path:
        """Write the trail as JSON; decimals, dates and enums are converted to primitives."""
        output_path.parent.mkdir(parents=True, exist_ok=True)

        document = {
            "trail_id": self.trail_id,
            "exported_at": datetime.utcnow().isoformat(),
            "total_entries": len(self.entries),
            "entries": to_primitive(self.entries),
        }
        output_path.write_text(json.dumps(document, indent=2, ensure_ascii=False, default=str), encoding="utf-8")

        logger.info("Audit trail exported", trail_id=self.trail_id, path=str(output_path))
        return output_path

    def summary(self) -> dict:
        """Counts by action and organization, plus failures."""
        failures = [e for e in self.entries if not e.success]
        return {
            "total_entries": len(self.entries),
            "success_count": len(self.entries) - len(failures),
            "error_count": len(failures),
            "action_counts": dict(Counter(e.action.value for e in self.entries)),
            "organization_counts": dict(Counter(e.organization_id for e in self.entries if e.organization_id)),
        }
