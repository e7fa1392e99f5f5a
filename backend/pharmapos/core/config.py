"""Application configuration.

Environment variables override all defaults. A `.env` file next to the
backend directory is loaded for local development.
"""

import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env for local development (no-op when the file is absent)
_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./pharmapos.db")

    # Upper bound (seconds) for waiting on locks / connections / statements.
    # Exceeding it surfaces as StoreUnavailable.
    STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

    # Invoice numbers are regenerated this many times on a unique-key collision
    INVOICE_NUMBER_MAX_ATTEMPTS: int = int(os.getenv("INVOICE_NUMBER_MAX_ATTEMPTS", "5"))

    # Stock below this is reported as "Low Stock"
    LOW_STOCK_THRESHOLD: int = int(os.getenv("LOW_STOCK_THRESHOLD", "20"))

    # Principal token is read from this cookie when no Authorization header is sent
    AUTH_COOKIE_NAME: str = os.getenv("AUTH_COOKIE_NAME", "pharmapos_token")

    # CORS (specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    ]

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")


settings = Settings()


def configure_logging() -> None:
    """Set up root logging once at startup. Audit events go to the `audit` logger."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
