"""Rapprochement bancaire - FastAPI application."""

import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rapprochement.config import settings
from rapprochement.database import engine
from rapprochement.logger import configure_logging, get_logger, log_exception
from rapprochement.routers import reconciliation
from rapprochement.services.errors import ReconciliationError
from rapprochement.services.reconciliation import load_reconciliation_config

VERSION = "0.1.0"
REQUEST_ID_HEADER = "X-Request-ID"

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the scoring policy before serving; release the pool on shutdown."""
    policy = load_reconciliation_config()
    logger.info(
        "Reconciliation service started",
        version=VERSION,
        environment=settings.environment,
        matched_threshold=policy.matched_threshold,
        uncertain_threshold=policy.uncertain_threshold,
        auto_aggregate=policy.auto_aggregate,
        auto_inverse=policy.auto_inverse,
    )
    yield
    await engine.dispose()
    logger.info("Reconciliation service stopped")


app = FastAPI(
    title="Rapprochement bancaire API",
    description="Bank statement reconciliation against invoices, subscriptions and charge declarations",
    version=VERSION,
    lifespan=lifespan,
)


def _current_request_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("request_id")


@app.middleware("http")
async def request_context(request: Request, call_next: Any) -> Response:
    """Bind a request id for every log line of the request and echo it back."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "HTTP request",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
    """Service errors not translated by a route are client errors, never raw 500s."""
    logger.warning("Unhandled reconciliation error", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "request_id": _current_request_id()},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_exception(logger, exc, "Unhandled error")
    content: dict[str, Any] = {
        "detail": "An internal server error occurred. Please try again later.",
        "request_id": _current_request_id(),
    }
    if settings.debug:
        content["detail"] = str(exc)
        content["trace"] = "".join(traceback.format_exception(exc))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", REQUEST_ID_HEADER],
)

app.include_router(reconciliation.router)


@app.get("/ping")
async def ping() -> dict[str, str]:
    return {"status": "pong"}
