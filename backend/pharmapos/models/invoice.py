"""
Invoice: finalized, immutable record of a sale.

Status flow is pending -> paid / cancelled, but status changes are not made
by the invoice workflow; it only ever writes `pending`.
"""
import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from pharmapos.db.base import Base


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    # Snapshot of the customer as given on the draft
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(10), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)  # Σ quantity × price, server-computed
    status = Column(String(32), nullable=False, default=InvoiceStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, index=True)

    customer = relationship("Customer", backref="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # order on the draft
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    invoice = relationship("Invoice", back_populates="items")
