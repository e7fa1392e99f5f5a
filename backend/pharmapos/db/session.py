"""Database session. SQLite compatible with connection pooling."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from pharmapos.core.config import settings


def build_engine(database_url: str, timeout: float = settings.STORE_TIMEOUT_SECONDS) -> Engine:
    """Create an engine whose lock / connection waits are bounded by `timeout` seconds."""
    if database_url.startswith("sqlite"):
        # SQLite: NullPool for thread-safety, busy timeout bounds lock waits
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
            poolclass=NullPool,
        )

    connect_args = {}
    if database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"

    # PostgreSQL/MySQL: Use QueuePool with sensible defaults
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_size=5,  # Number of persistent connections
        max_overflow=10,  # Max temporary connections
        pool_timeout=timeout,  # Seconds to wait for connection
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Verify connection health
    )


def build_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_sessionmaker(engine)
