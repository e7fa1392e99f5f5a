"""Invoice Store: unique insert, lookups and customer records."""
import logging
import secrets
import string
import time
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from pharmapos.core.exceptions import DuplicateInvoiceNumber
from pharmapos.models.customer import Customer
from pharmapos.models.invoice import Invoice

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_invoice_number() -> str:
    """`INV-<last 6 digits of epoch millis>-<4 random base36 chars>`.

    Not unique on its own; the invoices.invoice_number constraint is.
    """
    millis = int(time.time() * 1000) % 1_000_000
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"INV-{millis:06d}-{suffix}"


def normalize_customer_name(name: str) -> str:
    """Strip and collapse whitespace. Used as the customer lookup key."""
    return " ".join((name or "").split())


def find_customer(db: Session, name: str) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.name == name).first()


def get_or_create_customer(db: Session, name: str, phone: Optional[str] = None) -> Customer:
    """Find customer by name or create. Fills in a phone the record lacks.

    Flushes but does not commit; the caller owns the transaction.
    """
    c = find_customer(db, name)
    if c:
        if phone and not c.phone:
            c.phone = phone
        return c
    c = Customer(name=name, phone=phone)
    db.add(c)
    db.flush()
    return c


def invoice_number_taken(db: Session, invoice_number: str) -> bool:
    return db.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first() is not None


def insert_unique(db: Session, invoice: Invoice) -> Invoice:
    """Add `invoice` and flush it, surfacing a key collision as DuplicateInvoiceNumber.

    After DuplicateInvoiceNumber the session must be rolled back.
    """
    db.add(invoice)
    try:
        db.flush()
    except IntegrityError as e:
        logger.warning(f"Invoice insert collided for {invoice.invoice_number}: {e.orig}")
        raise DuplicateInvoiceNumber(
            f"Invoice number {invoice.invoice_number} already exists",
            field="invoice_number",
        ) from e
    return invoice


def get_invoice(db: Session, invoice_number: str) -> Optional[Invoice]:
    return (
        db.query(Invoice)
        .options(selectinload(Invoice.items))
        .filter(Invoice.invoice_number == invoice_number)
        .first()
    )


def list_invoices(db: Session, search: Optional[str] = None, limit: int = 100) -> List[Invoice]:
    """Newest first, optionally filtered by customer name (case-insensitive)."""
    q = db.query(Invoice).options(selectinload(Invoice.items))
    if search:
        q = q.filter(Invoice.customer_name.icontains(search, autoescape=True))
    return q.order_by(Invoice.issued_at.desc(), Invoice.id.desc()).limit(limit).all()
