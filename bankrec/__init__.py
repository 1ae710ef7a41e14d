"""
Bank reconciliation engine.

Imports bank statements, matches their lines against ledger entries with
prioritized rules, and reports on reconciliation sessions.
"""

from .config import Settings, get_settings
from .errors import BankReconciliationError, ErrorCode
from .models import UserContext
from .repository import InMemoryRepository, ReconciliationRepository
from .responses import ServiceError, ServiceResponse
from .service import BankReconciliationService

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "get_settings",
    "BankReconciliationError",
    "ErrorCode",
    "UserContext",
    "InMemoryRepository",
    "ReconciliationRepository",
    "ServiceError",
    "ServiceResponse",
    "BankReconciliationService",
]
