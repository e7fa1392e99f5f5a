from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StockEntryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    quantity: int
    price: Decimal
    expiry: Optional[date] = None
    status: str = "In Stock"
