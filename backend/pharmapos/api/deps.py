"""FastAPI dependencies: DB session and the authenticated principal.

The principal is an opaque token that has already been verified upstream.
It is read from:
1. Authorization header (for API clients)
2. cookie named settings.AUTH_COOKIE_NAME (for the web frontend)
"""
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from pharmapos.core.config import settings
from pharmapos.core.exceptions import BusinessError
from pharmapos.db.session import SessionLocal

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Return the caller's principal. Header takes precedence over cookie.
    """
    principal = None
    if credentials:
        principal = credentials.credentials
    elif settings.AUTH_COOKIE_NAME in request.cookies:
        principal = request.cookies[settings.AUTH_COOKIE_NAME]

    if not principal or not principal.strip():
        raise BusinessError.unauthorized(f"no principal on {request.method} {request.url.path}")
    return principal.strip()
