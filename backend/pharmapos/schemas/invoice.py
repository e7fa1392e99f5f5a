from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from pharmapos.models.invoice import Invoice, InvoiceStatus


class CustomerInfo(BaseModel):
    name: str = ""
    phone: Optional[str] = None


class LineItem(BaseModel):
    """One medicine line. `price` is the unit price."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    name: str = ""
    quantity: StrictInt
    price: Decimal


class DraftInvoice(BaseModel):
    """Caller-submitted invoice request. `total_amount` is the declared total, if any."""

    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    items: List[LineItem] = Field(default_factory=list)
    total_amount: Optional[Decimal] = None
    notes: Optional[str] = None


class FinalizedInvoice(BaseModel):
    invoice_number: str
    customer: CustomerInfo
    items: List[LineItem]
    total_amount: Decimal
    issued_at: datetime
    status: InvoiceStatus
    notes: Optional[str] = None

    @classmethod
    def from_model(cls, invoice: Invoice) -> "FinalizedInvoice":
        return cls(
            invoice_number=invoice.invoice_number,
            customer=CustomerInfo(name=invoice.customer_name, phone=invoice.customer_phone),
            items=[LineItem.model_validate(item) for item in invoice.items],
            total_amount=invoice.total_amount,
            issued_at=invoice.issued_at,
            status=InvoiceStatus(invoice.status),
            notes=invoice.notes,
        )


class InvoiceSummary(BaseModel):
    """Row of the invoice history list."""

    invoice_number: str
    customer: str
    total_amount: Decimal
    item_count: int
    issued_at: datetime
    status: InvoiceStatus
