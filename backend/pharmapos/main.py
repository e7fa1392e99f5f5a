"""
Pharmacy POS Backend: invoice workflow API.

ARCHITECTURE:
- FastAPI Backend: validation, stock reservation, persistence
- SQL database (SQLite by default): source of truth for stock and invoices
- Browser frontend and authentication live elsewhere; callers arrive with
  an already-verified principal

CONSISTENCY MODEL:
- An invoice and the stock it consumes are committed in one transaction
- Stock is only lowered by a guarded UPDATE, never read-modify-write
- Every failure names the field/item at fault; none leaves partial state
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pharmapos.api.routes import invoices, stock
from pharmapos.core.config import configure_logging, settings
from pharmapos.core.exceptions import BusinessError, InvalidInput, WorkflowError
from pharmapos.db.init_db import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    1. Configure logging
    2. Initialize database tables
    """
    configure_logging()
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")
    yield


app = FastAPI(
    title="PharmaPOS API",
    description="Pharmacy point of sale: invoice creation with atomic stock reservation.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ],
    max_age=600,  # Cache preflight for 10 minutes
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    headers = {"Retry-After": "1"} if exc.retriable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _field_path(loc) -> str:
    """("body", "items", 0, "quantity") -> "items[0].quantity"."""
    path = ""
    for part in loc:
        if part == "body":
            continue
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Render request-shape errors in the same form as InvalidInput."""
    first = exc.errors()[0]
    loc = tuple(first.get("loc", ()))
    item = loc[2] if len(loc) > 2 and loc[1] == "items" and isinstance(loc[2], int) else None
    field = _field_path(loc)
    error = InvalidInput(f"{field}: {first.get('msg', 'invalid value')}", field=field or None, item=item)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    http_exc = BusinessError.server_error(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


app.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
app.include_router(stock.router, prefix="/stock", tags=["stock"])


@app.get("/health")
def health():
    return {"status": "ok"}
