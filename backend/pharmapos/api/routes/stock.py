"""Read-only stock lookup. Stock changes go through the invoice workflow."""
from fastapi import APIRouter, Depends
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from pharmapos.api.deps import get_db, get_principal
from pharmapos.core.config import settings
from pharmapos.core.exceptions import NotFound, StoreUnavailable
from pharmapos.schemas.stock import StockEntryRecord
from pharmapos.services.stock_service import find_stock_entry, stock_status

router = APIRouter()


@router.get("/{name}", response_model=StockEntryRecord)
def get_stock(
    name: str,
    db: Session = Depends(get_db),
    principal: str = Depends(get_principal),
):
    try:
        entry = find_stock_entry(db, name)
    except DBAPIError as e:
        raise StoreUnavailable("stock store unavailable") from e
    if not entry:
        raise NotFound(f"medicine {name} not in inventory", field="name")
    return StockEntryRecord(
        name=entry.name,
        quantity=entry.quantity,
        price=entry.price,
        expiry=entry.expiry,
        status=stock_status(entry, settings.LOW_STOCK_THRESHOLD),
    )
