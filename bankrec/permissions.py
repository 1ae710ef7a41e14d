"""Permission checks applied before every public operation."""

from typing import Dict, Tuple

import structlog

from .errors import PermissionDeniedError
from .models import UserContext

logger = structlog.get_logger()

REQUIRED_PERMISSIONS: Dict[str, Tuple[str, ...]] = {
    "read": ("bank_reconciliation.read", "bank_reconciliation.view"),
    "write": (
        "bank_reconciliation.write",
        "bank_reconciliation.create",
        "bank_reconciliation.update",
    ),
    "delete": ("bank_reconciliation.delete",),
    "admin": ("bank_reconciliation.admin",),
}


def check_permissions(user: UserContext, operation: str, organization_id: str) -> bool:
    """True if the user belongs to the organization and holds a permission for the operation."""
    if user.organization_id != organization_id:
        return False
    return user.has_any(*REQUIRED_PERMISSIONS.get(operation, ()))


def require_permission(
    user: UserContext,
    operation: str,
    organization_id: str,
    action: str,
) -> None:
    """Raise PermissionDeniedError unless check_permissions passes."""
    if not check_permissions(user, operation, organization_id):
        logger.warning(
            "Permission denied",
            user_id=user.user_id,
            operation=operation,
            organization_id=organization_id,
            action=action,
        )
        raise PermissionDeniedError(f"Insufficient permissions to {action}")
