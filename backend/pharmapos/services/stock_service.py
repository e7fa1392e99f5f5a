"""Stock Store: lookups and the conditional decrement used by the invoice workflow."""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from pharmapos.models.medicine import Medicine

logger = logging.getLogger(__name__)


def find_stock_entry(db: Session, name: str) -> Optional[Medicine]:
    # populate_existing: conditional_decrement bypasses the identity map
    return db.query(Medicine).filter(Medicine.name == name).populate_existing().first()


def conditional_decrement(db: Session, name: str, amount: int) -> bool:
    """Decrement stock of `name` by `amount` only if at least `amount` is on hand.

    Runs as one guarded UPDATE, so concurrent callers cannot both consume the
    same units. Returns False when the guard failed (or the medicine is gone).
    Does not commit; the caller owns the transaction.
    """
    result = db.execute(
        update(Medicine)
        .where(Medicine.name == name, Medicine.quantity >= amount)
        .values(quantity=Medicine.quantity - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(f"Conditional decrement failed for {name!r}: needed {amount}")
        return False
    return True


def stock_status(entry: Medicine, low_stock_threshold: int) -> str:
    if entry.quantity == 0:
        return "Out of Stock"
    if entry.quantity < low_stock_threshold:
        return "Low Stock"
    return "In Stock"
