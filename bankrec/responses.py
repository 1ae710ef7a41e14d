"""Uniform response envelope returned by every public operation."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .errors import BankReconciliationError, ErrorCode
from .models.serialization import to_primitive

T = TypeVar("T")


@dataclass
class ServiceError:
    """One error or warning entry in an envelope."""
    code: ErrorCode
    message: str
    severity: str = "error"  # "error", "warning" or "info"
    timestamp: datetime = field(default_factory=datetime.utcnow)
    details: Optional[Any] = None

    @classmethod
    def from_exception(cls, exc: BankReconciliationError) -> "ServiceError":
        return cls(code=exc.code, message=exc.message, details=exc.details)

    @classmethod
    def warning(cls, code: ErrorCode, message: str, details: Optional[Any] = None) -> "ServiceError":
        return cls(code=code, message=message, severity="warning", details=details)


@dataclass
class ServiceResponse(Generic[T]):
    success: bool
    data: Optional[T] = None
    errors: List[ServiceError] = field(default_factory=list)
    warnings: List[ServiceError] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: Optional[T] = None,
        warnings: Optional[List[ServiceError]] = None,
        **metadata: Any,
    ) -> "ServiceResponse[T]":
        return cls(success=True, data=data, warnings=warnings or [], metadata=metadata)

    @classmethod
    def fail(cls, *errors: ServiceError) -> "ServiceResponse[T]":
        return cls(success=False, errors=list(errors))

    @classmethod
    def from_exception(cls, exc: BankReconciliationError) -> "ServiceResponse[T]":
        if exc.code == ErrorCode.VALIDATION_ERROR and isinstance(exc.details, list):
            # One entry per validation issue
            return cls.fail(*[
                ServiceError(code=exc.code, message=str(issue)) for issue in exc.details
            ])
        return cls.fail(ServiceError.from_exception(exc))

    @property
    def cache_hit(self) -> bool:
        return bool(self.metadata.get("cache_hit", False))

    @property
    def error_codes(self) -> List[ErrorCode]:
        return [e.code for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return to_primitive(self)
