"""Bank reconciliation service - FastAPI application."""

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bankrecon import __version__
from bankrecon.config import settings
from bankrecon.database import get_db, init_db
from bankrecon.logger import configure_logging, get_logger
from bankrecon.routers import bank_imports, bank_transactions
from bankrecon.services.matching import load_scoring_config

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan - init DB and scoring config on startup."""
    await init_db()
    config = load_scoring_config()
    logger.info(
        "Application started",
        version=__version__,
        environment=settings.environment,
        confirm_threshold=config.confirm_threshold,
        candidate_floor=config.candidate_floor,
    )
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title="Bank Reconciliation API",
    description="Bank statement import and invoice matching",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next: Any) -> Response:
    """Middleware to inject Request-ID and log request details."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        logger.info(
            "HTTP Request",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        duration = time.perf_counter() - start_time
        logger.exception(
            "HTTP Request Failed",
            duration_ms=round(duration * 1000, 2),
            error=str(exc),
        )
        raise


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to ensure JSON response."""
    if settings.debug:
        detail = str(exc)
        trace = traceback.format_exc()
    else:
        detail = "An internal server error occurred. Please try again later."
        trace = None

    return JSONResponse(
        status_code=500,
        content={
            "detail": detail,
            "trace": trace,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(bank_imports.router)
app.include_router(bank_transactions.router)


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> Response:
    """Report database connectivity; 503 when the database is unreachable."""
    checks = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(
            "Health check: database unreachable",
            error=str(e),
            error_type=type(e).__name__,
        )
        checks["database"] = False

    healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
            "version": __version__,
        },
    )
