from sqlalchemy import Column, Integer, String

from pharmapos.db.base import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(10), nullable=True)
