"""
Mess Billing API - FastAPI Backend
Credits ledger, payment verification, billing and QR membership attestation.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    payment_verification,
    credits,
    trial,
    billing,
    qr,
    memberships,
)
from services.errors import DomainError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Mess Billing API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if settings.DISTRIBUTED_LOCKS_ENABLED:
        print("🔒 Distributed mess locks enabled (Redis).")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Mess Billing API",
    description="Credits, payment verification, billing and QR membership checks for mess owners",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("Domain error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(payment_verification.router, prefix="/payment-verification", tags=["Payment Verification"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(trial.router, prefix="/trial", tags=["Free Trial"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(qr.router, prefix="/qr", tags=["QR"])
app.include_router(memberships.router, prefix="/memberships", tags=["Memberships"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Mess Billing API",
        "version": "0.1.0",
        "status": "running"
    }
