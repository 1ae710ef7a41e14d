"""
Error taxonomy for the reconciliation engine.

Every failure carries an ErrorCode so the service boundary can convert it into a
structured envelope entry instead of letting it escape.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    BANK_ACCOUNT_NOT_FOUND = "BANK_ACCOUNT_NOT_FOUND"
    STATEMENT_NOT_FOUND = "STATEMENT_NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    MATCH_NOT_FOUND = "MATCH_NOT_FOUND"
    DUPLICATE_STATEMENT = "DUPLICATE_STATEMENT"
    INVALID_FILE_FORMAT = "INVALID_FILE_FORMAT"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    MATCHING_ERROR = "MATCHING_ERROR"
    RULE_ERROR = "RULE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class BankReconciliationError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.PROCESSING_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


class ValidationFailedError(BankReconciliationError):
    code = ErrorCode.VALIDATION_ERROR


class PermissionDeniedError(BankReconciliationError):
    code = ErrorCode.PERMISSION_DENIED


class NotFoundError(BankReconciliationError):
    """Missing account, statement, transaction, session or match."""
    code = ErrorCode.BANK_ACCOUNT_NOT_FOUND


class DuplicateStatementError(BankReconciliationError):
    code = ErrorCode.DUPLICATE_STATEMENT


class InvalidFileFormatError(BankReconciliationError):
    code = ErrorCode.INVALID_FILE_FORMAT


class ProcessingError(BankReconciliationError):
    code = ErrorCode.PROCESSING_ERROR


class MatchingError(BankReconciliationError):
    code = ErrorCode.MATCHING_ERROR


class DatabaseError(BankReconciliationError):
    code = ErrorCode.DATABASE_ERROR


class CacheError(BankReconciliationError):
    code = ErrorCode.CACHE_ERROR


class OperationTimeoutError(BankReconciliationError):
    code = ErrorCode.TIMEOUT_ERROR


class ConfigurationError(BankReconciliationError):
    code = ErrorCode.CONFIGURATION_ERROR
