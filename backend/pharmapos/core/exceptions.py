"""
Error taxonomy for the invoice workflow, plus safe HTTP errors.

WorkflowError subclasses are raised by the services and rendered by the
exception handler in main.py. Every one of them names the offending field
and/or item so the caller can correct the request.

BusinessError keeps generic HTTP failures non-leaky: detailed logging
internally, generic messages externally.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for every failure `submit` can report."""

    kind = "WorkflowError"
    status_code = status.HTTP_400_BAD_REQUEST
    retriable = False

    def __init__(self, message: str, field: Optional[str] = None, item: Optional[int] = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.field = field
        self.item = item
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.field is not None:
            body["field"] = self.field
        if self.item is not None:
            body["item"] = self.item
        for key, value in self.details.items():
            body[key] = str(value) if isinstance(value, Decimal) else value
        return body

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WorkflowError):
            return NotImplemented
        return type(self) is type(other) and self.to_dict() == other.to_dict()

    __hash__ = Exception.__hash__

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()!r})"


class InvalidInput(WorkflowError):
    """Request shape problem. No side effects occurred."""

    kind = "InvalidInput"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(WorkflowError):
    """Referenced medicine (or invoice) does not exist."""

    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientStock(WorkflowError):
    kind = "InsufficientStock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, name: str, requested: int, available: int, item: Optional[int] = None):
        super().__init__(
            f'Insufficient stock for "{name}". Requested: {requested}, available: {available}',
            field="items.quantity",
            item=item,
            medicine=name,
            requested=requested,
            available=available,
        )
        self.name = name
        self.requested = requested
        self.available = available


class TotalMismatch(WorkflowError):
    kind = "TotalMismatch"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, declared: Decimal, computed: Decimal):
        super().__init__(
            f"Provided total amount {declared} does not match calculated total {computed}",
            field="total_amount",
            declared=declared,
            computed=computed,
        )
        self.declared = declared
        self.computed = computed


class DuplicateInvoiceNumber(WorkflowError):
    """Generated invoice numbers kept colliding. Transient."""

    kind = "DuplicateInvoiceNumber"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retriable = True


class StoreUnavailable(WorkflowError):
    """Persistence failed for infrastructural reasons. Nothing was committed."""

    kind = "StoreUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retriable = True


class BusinessError:
    """Generic HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def unauthorized(reason: str = "") -> HTTPException:
        """
        Generic 401 for all authentication failures.

        Same response whatever the reason, to prevent principal enumeration.
        """
        logger.warning(f"Unauthorized access attempt: {reason}")
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.

        Never expose stack traces, SQL errors, or internal paths to users.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=original_error,
            )
        else:
            logger.error("Internal server error occurred")

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )
