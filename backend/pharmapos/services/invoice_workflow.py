"""
Invoice Workflow Engine: draft in, finalized invoice (or a precise error) out.

Flow:
1. Validate the draft shape (no database access, no side effects)
2. Resolve every medicine and pre-check stock (reads only)
3. Compute the total server-side; reject a disagreeing declared total
4. ONE transaction: conditionally decrement stock per medicine, record the
   customer, insert the invoice, commit
5. Return the persisted invoice

Step 4 is all-or-nothing. A decrement that loses a race to a concurrent
submission rolls back every decrement made before it, and no invoice is
written. An invoice-number collision rolls the unit back and retries it with
a fresh number, at most INVOICE_NUMBER_MAX_ATTEMPTS times.
"""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from pharmapos.core.audit import AuditLog
from pharmapos.core.config import settings
from pharmapos.core.exceptions import (
    DuplicateInvoiceNumber,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StoreUnavailable,
    TotalMismatch,
    WorkflowError,
)
from pharmapos.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from pharmapos.schemas.invoice import DraftInvoice, FinalizedInvoice, LineItem
from pharmapos.services.invoice_service import (
    find_customer,
    generate_invoice_number,
    get_or_create_customer,
    insert_unique,
    invoice_number_taken,
    normalize_customer_name,
)
from pharmapos.services.stock_service import conditional_decrement, find_stock_entry

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_NAME_LENGTH = 255

# Exclusive upper bounds of the Numeric(10, 2) price and Numeric(12, 2) total columns
MAX_PRICE = Decimal("100000000")
MAX_TOTAL = Decimal("10000000000")

_STORE_ERRORS = (DBAPIError, PoolTimeoutError)


def compute_total(items: List[LineItem]) -> Decimal:
    """Σ quantity × price, rounded half-up to cents.

    Raises InvalidInput(field="total_amount") when the total does not fit the invoice.
    """
    total = sum((Decimal(item.quantity) * item.price for item in items), Decimal("0"))
    if total >= MAX_TOTAL:
        raise InvalidInput(f"invoice total must be less than {MAX_TOTAL}", field="total_amount")
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_draft(draft: DraftInvoice) -> Tuple[str, Optional[str], List[LineItem]]:
    """Check the draft shape. Returns (customer name, phone, normalized items).

    The customer name is only stripped; collapsing inner whitespace is left to
    the customer lookup so the invoice keeps the name as written.

    Raises InvalidInput naming the offending field and item index.
    """
    customer_name = (draft.customer.name or "").strip()
    if not normalize_customer_name(customer_name):
        raise InvalidInput("customer name required", field="customer.name")
    if len(customer_name) > MAX_NAME_LENGTH:
        raise InvalidInput(
            f"customer name must be at most {MAX_NAME_LENGTH} characters", field="customer.name"
        )

    if not draft.items:
        raise InvalidInput("at least one item required", field="items")

    items = []
    for index, item in enumerate(draft.items):
        name = (item.name or "").strip()
        if not name:
            raise InvalidInput(f"item {index}: name required", field=f"items[{index}].name", item=index)
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidInput(
                f"item {index}: name must be at most {MAX_NAME_LENGTH} characters",
                field=f"items[{index}].name",
                item=index,
            )
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidInput(
                f'item {index} ("{name}"): quantity must be an integer greater than 0',
                field=f"items[{index}].quantity",
                item=index,
            )
        price = item.price
        if not isinstance(price, Decimal) or not price.is_finite() or price < 0:
            raise InvalidInput(
                f'item {index} ("{name}"): price must be 0 or more',
                field=f"items[{index}].price",
                item=index,
            )
        if price >= MAX_PRICE:
            raise InvalidInput(
                f'item {index} ("{name}"): price must be less than {MAX_PRICE}',
                field=f"items[{index}].price",
                item=index,
            )
        if price.quantize(CENT) != price:
            raise InvalidInput(
                f'item {index} ("{name}"): price must have at most 2 decimal places',
                field=f"items[{index}].price",
                item=index,
            )
        items.append(LineItem(name=name, quantity=quantity, price=price))

    phone = (draft.customer.phone or "").strip() or None
    if phone is not None and not (len(phone) == 10 and phone.isdigit()):
        raise InvalidInput(f"{phone} is not a valid phone number", field="customer.phone")

    return customer_name, phone, items


def _requested_per_medicine(items: List[LineItem]) -> Dict[str, Tuple[int, int]]:
    """name -> (total quantity across lines, index of first line naming it)."""
    requested: Dict[str, Tuple[int, int]] = {}
    for index, item in enumerate(items):
        quantity, first = requested.get(item.name, (0, index))
        requested[item.name] = (quantity + item.quantity, first)
    return requested


def _precheck_stock(db: Session, requested: Dict[str, Tuple[int, int]]) -> None:
    # Two passes so a missing medicine is reported before any shortage
    entries = {}
    for name, (_, index) in requested.items():
        entry = find_stock_entry(db, name)
        if entry is None:
            raise NotFound(f"medicine {name} not in inventory", field=f"items[{index}].name", item=index)
        entries[name] = entry
    for name, (quantity, index) in requested.items():
        if entries[name].quantity < quantity:
            raise InsufficientStock(name, quantity, entries[name].quantity, item=index)


def _still_taken(db: Session, is_taken: Callable[[], bool]) -> bool:
    """Re-check, after rollback, that a unique key a flush tripped over now exists."""
    try:
        return is_taken()
    except _STORE_ERRORS as e:
        db.rollback()
        raise StoreUnavailable("invoice store unavailable, nothing was committed") from e


def _reserve_and_commit(
    db: Session,
    customer_name: str,
    phone: Optional[str],
    items: List[LineItem],
    requested: Dict[str, Tuple[int, int]],
    total: Decimal,
    notes: Optional[str],
    number_generator: Callable[[], str],
    max_attempts: int,
) -> Invoice:
    customer_key = normalize_customer_name(customer_name)
    last_collision: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        invoice_number = number_generator()
        try:
            # Sorted order keeps row locks acquired in the same order across invoices
            for name in sorted(requested):
                quantity, index = requested[name]
                if not conditional_decrement(db, name, quantity):
                    db.rollback()
                    entry = find_stock_entry(db, name)
                    if entry is None:
                        raise NotFound(
                            f"medicine {name} not in inventory", field=f"items[{index}].name", item=index
                        )
                    # A restock may land between the refused update and this read
                    available = min(entry.quantity, quantity - 1)
                    raise InsufficientStock(name, quantity, available, item=index)

            customer = get_or_create_customer(db, customer_key, phone)
            invoice = Invoice(
                invoice_number=invoice_number,
                customer_id=customer.id,
                customer_name=customer_name,
                customer_phone=phone,
                total_amount=total,
                status=InvoiceStatus.PENDING.value,
                notes=notes,
                issued_at=datetime.now(timezone.utc),
                items=[
                    InvoiceItem(position=position, name=item.name, quantity=item.quantity, price=item.price)
                    for position, item in enumerate(items)
                ],
            )
            insert_unique(db, invoice)
            db.commit()
            return invoice
        except DuplicateInvoiceNumber as e:
            db.rollback()
            if not _still_taken(db, lambda: invoice_number_taken(db, invoice_number)):
                logger.error(f"Invoice {invoice_number} rejected by a constraint other than its number: {e}")
                raise StoreUnavailable("invoice could not be stored, nothing was committed") from e
            last_collision = e
            logger.warning(f"Invoice number collision on attempt {attempt}/{max_attempts}: {invoice_number}")
        except IntegrityError as e:
            db.rollback()
            if not _still_taken(db, lambda: find_customer(db, customer_key) is not None):
                logger.error(f"Customer {customer_key} could not be stored: {e.orig}")
                raise StoreUnavailable("customer could not be stored, nothing was committed") from e
            # Created concurrently by another submission; the retry finds it
            last_collision = e
            logger.warning(f"Customer {customer_key} created concurrently, attempt {attempt}/{max_attempts}")
        except _STORE_ERRORS as e:
            db.rollback()
            logger.error(f"Store failure while committing invoice {invoice_number}: {e}")
            raise StoreUnavailable("invoice store unavailable, nothing was committed") from e

    raise DuplicateInvoiceNumber(
        f"could not allocate a unique invoice number after {max_attempts} attempts",
        field="invoice_number",
        attempts=max_attempts,
    ) from last_collision


def submit(
    db: Session,
    draft: DraftInvoice,
    principal: Optional[str] = None,
    number_generator: Callable[[], str] = generate_invoice_number,
    max_attempts: Optional[int] = None,
) -> FinalizedInvoice:
    """Validate `draft`, reserve its stock and persist it as a finalized invoice.

    Args:
        db: Database session. submit commits or rolls it back itself.
        draft: The caller's draft invoice
        principal: Opaque authenticated caller, recorded in the audit log
        number_generator: Invoice number source; uniqueness is checked by the store
        max_attempts: Bound on invoice-number regeneration (default from settings)

    Returns:
        The persisted invoice

    Raises:
        InvalidInput, NotFound, InsufficientStock, TotalMismatch: terminal, no side effects
        DuplicateInvoiceNumber, StoreUnavailable: transient, no side effects
    """
    if max_attempts is None:
        max_attempts = settings.INVOICE_NUMBER_MAX_ATTEMPTS

    try:
        customer_name, phone, items = validate_draft(draft)
        requested = _requested_per_medicine(items)
        try:
            _precheck_stock(db, requested)
        except _STORE_ERRORS as e:
            db.rollback()
            logger.error(f"Store failure while checking stock: {e}")
            raise StoreUnavailable("stock store unavailable, nothing was committed") from e

        total = compute_total(items)
        if draft.total_amount is not None and draft.total_amount != total:
            raise TotalMismatch(draft.total_amount, total)

        notes = (draft.notes or "").strip() or None
        invoice = _reserve_and_commit(
            db, customer_name, phone, items, requested, total, notes, number_generator, max_attempts
        )
    except WorkflowError as e:
        db.rollback()
        logger.info(f"Invoice rejected: {e!r}")
        AuditLog.log_invoice_rejected(principal, e.to_dict())
        raise

    finalized = FinalizedInvoice.from_model(invoice)
    logger.info(
        f"Invoice {finalized.invoice_number} created for {customer_name}: "
        f"{len(items)} item(s), total={finalized.total_amount}"
    )
    AuditLog.log_invoice_created(
        finalized.invoice_number,
        principal,
        finalized.total_amount,
        [{"medicine": name, "quantity": quantity} for name, (quantity, _) in sorted(requested.items())],
    )
    return finalized
