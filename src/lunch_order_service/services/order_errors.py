"""Typed results for order lifecycle operations.

Expected failures are returned as values, never raised, so callers can map
each error kind to a fixed HTTP status and a stable machine-readable code.
"""

from dataclasses import dataclass, field
from enum import Enum

from lunch_order_service.models.order_models import Order


class ErrorKind(str, Enum):
    """Closed set of failure kinds returned by the lifecycle service."""

    MENU_NOT_FOUND = "MENU_NOT_FOUND"
    MENU_NOT_AVAILABLE = "MENU_NOT_AVAILABLE"
    ORDER_DEADLINE_PASSED = "ORDER_DEADLINE_PASSED"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    SEQUENCE_EXHAUSTED = "SEQUENCE_EXHAUSTED"
    ALLOCATION_ERROR = "ALLOCATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self]

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.MENU_NOT_FOUND: 404,
    ErrorKind.MENU_NOT_AVAILABLE: 400,
    ErrorKind.ORDER_DEADLINE_PASSED: 400,
    ErrorKind.DUPLICATE_ORDER: 409,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.ORDER_NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.ALREADY_CANCELLED: 409,
    ErrorKind.SEQUENCE_EXHAUSTED: 409,
    ErrorKind.ALLOCATION_ERROR: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}

RETRYABLE_KINDS = frozenset({ErrorKind.ALLOCATION_ERROR, ErrorKind.INTERNAL_ERROR})


@dataclass
class FieldError:
    """A single offending input field."""

    field: str
    message: str


@dataclass
class OrderError:
    """Failure details for an order operation.

    Attributes:
        kind: The error kind
        message: Human-readable description
        field_errors: Offending fields, populated for VALIDATION_ERROR
    """

    kind: ErrorKind
    message: str
    field_errors: list[FieldError] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


@dataclass
class OrderResult:
    """Result of an order lifecycle operation.

    Attributes:
        success: Whether the operation completed
        order: The persisted order on success, None otherwise
        error: Failure details on failure, None otherwise
    """

    success: bool
    order: Order | None = None
    error: OrderError | None = None

    @classmethod
    def ok(cls, order: Order) -> "OrderResult":
        return cls(success=True, order=order)

    @classmethod
    def fail(cls, error: OrderError) -> "OrderResult":
        return cls(success=False, error=error)


class OrderOperationError(Exception):
    """Internal short-circuit carrying an OrderError up to the public method."""

    def __init__(self, kind: ErrorKind, message: str, field_errors: list[FieldError] | None = None):
        super().__init__(message)
        self.error = OrderError(kind=kind, message=message, field_errors=field_errors or [])
