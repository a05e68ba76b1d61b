"""
RaaS — Billing API

FastAPI application serving the energy-credit ledger, allocations, energy
report uploads, invoices and aggregate statistics.

Endpoints (prefix /api/v1):
  POST /ledger/compute             — stateless ledger computation
  POST /ledger/post                — post a generator pool for a period range
  GET  /ledger/{installation_id}
  GET|POST /allocations, GET|PUT|DELETE /allocations/{id}
  GET|POST /distributors, GET|PUT|DELETE /distributors/{id}
  GET|POST /installations, GET|PUT|DELETE /installations/{id}
  POST /energy-data/upload, GET /energy-data/upload/history
  POST /invoices/calculate, POST /invoices/generate, GET /invoices, GET /invoices/stats,
  POST /invoices/refresh-overdue,
  GET /invoices/{id}, POST /invoices/{id}/pay, POST /invoices/{id}/cancel
  POST /stats/calculate, GET /stats
  GET  /health
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ..business.exceptions import (
    AllocationConflict, AllocationNotFound, DistributorConflict, DistributorNotFound,
    DuplicateInvoiceNumber, InstallationConflict, InstallationNotFound, InvalidInvoiceTransition,
    InvoiceNotFound, MissingPeriodError, NoEnergyData, PermissionDenied, RaaSError, SequencingError,
)
from ..config import settings

logger = logging.getLogger("raas.api")

# First match wins; anything else rooted at RaaSError is a 400.
ERROR_STATUS = (
    (PermissionDenied, 403),
    (AllocationNotFound, 404),
    (InvoiceNotFound, 404),
    (DistributorNotFound, 404),
    (InstallationNotFound, 404),
    (AllocationConflict, 409),
    (DistributorConflict, 409),
    (InstallationConflict, 409),
    (InvalidInvoiceTransition, 409),
    (DuplicateInvoiceNumber, 409),
    (MissingPeriodError, 422),
    (NoEnergyData, 422),
    (SequencingError, 409),
)


def status_for(exc: RaaSError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


async def raas_error_handler(request: Request, exc: RaaSError) -> JSONResponse:
    status = status_for(exc)
    logger.info("%s %s → %d %s: %s", request.method, request.url.path, status, type(exc).__name__, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": type(exc).__name__})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — create the DB pool unless one was injected."""
    logger.info("RaaS API starting...")
    engine = None
    if app.state.db_session is None:
        engine = create_engine(
            settings.database_url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=300,
        )
        app.state.db_engine = engine
        app.state.db_session = sessionmaker(engine, expire_on_commit=False)
    logger.info("RaaS API ready")
    yield

    if engine is not None:
        engine.dispose()
    logger.info("RaaS API stopped")


def create_app(session_factory=None) -> FastAPI:
    app = FastAPI(
        title="RaaS — Energy Credit Billing API",
        description=(
            "Roof-as-a-Service billing backend: generator surplus sharing, "
            "consumer credit ledger, invoicing and platform statistics."
        ),
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.db_session = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RaaSError, raas_error_handler)

    from .routes import (
        allocations, distributors, energy_data, health, installations, invoices, ledger, stats,
    )
    app.include_router(ledger.router, prefix="/api/v1", tags=["Ledger"])
    app.include_router(allocations.router, prefix="/api/v1", tags=["Allocations"])
    app.include_router(distributors.router, prefix="/api/v1", tags=["Distributors"])
    app.include_router(installations.router, prefix="/api/v1", tags=["Installations"])
    app.include_router(energy_data.router, prefix="/api/v1", tags=["Energy data"])
    app.include_router(invoices.router, prefix="/api/v1", tags=["Invoices"])
    app.include_router(stats.router, prefix="/api/v1", tags=["Stats"])
    app.include_router(health.router, prefix="/api/v1", tags=["Health"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
