"""Invoices: create (workflow engine) and read-only history."""
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from pharmapos.api.deps import get_db, get_principal
from pharmapos.core.exceptions import NotFound, StoreUnavailable
from pharmapos.schemas.invoice import DraftInvoice, FinalizedInvoice, InvoiceSummary
from pharmapos.services import invoice_service
from pharmapos.services.invoice_workflow import submit

router = APIRouter()


@router.post("", response_model=FinalizedInvoice, status_code=status.HTTP_201_CREATED)
def create_invoice(
    draft: DraftInvoice,
    db: Session = Depends(get_db),
    principal: str = Depends(get_principal),
):
    """Validate the draft, reserve stock and persist the invoice atomically."""
    return submit(db, draft, principal=principal)


@router.get("", response_model=List[InvoiceSummary])
def list_invoices(
    search: str | None = Query(None, description="Case-insensitive customer name filter"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: str = Depends(get_principal),
):
    """Invoice history, newest first."""
    try:
        rows = invoice_service.list_invoices(db, search=search, limit=limit)
    except DBAPIError as e:
        raise StoreUnavailable("invoice store unavailable") from e
    return [
        InvoiceSummary(
            invoice_number=inv.invoice_number,
            customer=inv.customer_name,
            total_amount=inv.total_amount,
            item_count=len(inv.items),
            issued_at=inv.issued_at,
            status=inv.status,
        )
        for inv in rows
    ]


@router.get("/{invoice_number}", response_model=FinalizedInvoice)
def get_invoice(
    invoice_number: str,
    db: Session = Depends(get_db),
    principal: str = Depends(get_principal),
):
    try:
        invoice = invoice_service.get_invoice(db, invoice_number)
    except DBAPIError as e:
        raise StoreUnavailable("invoice store unavailable") from e
    if not invoice:
        raise NotFound(f"invoice {invoice_number} not found", field="invoice_number")
    return FinalizedInvoice.from_model(invoice)
