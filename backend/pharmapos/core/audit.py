"""
Audit logging for invoice and stock events.

Every finalized invoice and every rejected submission is recorded on a
separate `audit` logger as one JSON line, so it can be shipped to
centralized logging independently of the application log.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for invoice workflow events."""

    @staticmethod
    def log_invoice_created(
        invoice_number: str,
        principal: Optional[str],
        total_amount: Any,
        stock_changes: List[Dict[str, Any]],
    ):
        """
        Log a committed invoice together with the stock it consumed.

        Usage:
            AuditLog.log_invoice_created("INV-123456-ab12", "cashier-1", Decimal("20.00"),
                                         [{"medicine": "Paracetamol", "quantity": 2}])
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "invoice.create",
            "principal": principal,
            "invoice_number": invoice_number,
            "total_amount": str(total_amount),
            "stock_changes": stock_changes,
        }
        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_invoice_rejected(
        principal: Optional[str],
        error: Dict[str, Any],
    ):
        """
        Log a submission that ended without a committed invoice.

        `error` is the WorkflowError payload (kind, message, field, item, details).
        """
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "invoice.rejected",
            "principal": principal,
            "error": error,
        }
        audit_logger.warning(json.dumps(log_entry))
