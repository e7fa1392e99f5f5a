from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func

from pharmapos.db.base import Base


class Medicine(Base):
    """
    Stock entry for one medicine, keyed by its unique name.

    `quantity` is only lowered through stock_service.conditional_decrement;
    the CHECK constraint rejects any write that would make it negative.
    """
    __tablename__ = "medicines"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_medicines_quantity_non_negative"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False, default=0)  # ₹ per unit
    expiry = Column(Date, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Medicine name={self.name!r} quantity={self.quantity}>"
