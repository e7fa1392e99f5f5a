"""Create all tables. Run on app startup."""
from typing import Optional

from sqlalchemy.engine import Engine

from pharmapos.db.base import Base
from pharmapos.db.session import engine as default_engine
from pharmapos.models import customer, invoice, medicine  # noqa: F401 - register models


def init_db(bind: Optional[Engine] = None):
    Base.metadata.create_all(bind=bind or default_engine)
