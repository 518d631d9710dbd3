"""
Point Ledger - FastAPI Backend
Main application entry point: download billing, recharge, and monitors.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    billing,
    recharge,
    admin,
    monitor,
)
from services.errors import PointsError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Point Ledger API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    print(f"🧾 Download dedupe strategy: {settings.POINT_DEDUPE_STRATEGY}")
    yield
    # Shutdown
    service = getattr(app.state, "billing_service", None)
    if service is not None:
        await service.drain()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Point Ledger API",
    description="Per-download point billing, recharge, and balance monitors",
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


@app.exception_handler(PointsError)
async def points_error_handler(request: Request, exc: PointsError):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error.get("loc", ()) if part != "body") for error in exc.errors()]
    return JSONResponse(status_code=400, content={"ok": False, "error": "BAD_REQUEST", "fields": fields})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(recharge.router, prefix="/recharge", tags=["Recharge"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
app.include_router(monitor.router, prefix="/monitor", tags=["Monitor"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Point Ledger API",
        "version": "0.1.0",
        "status": "running"
    }
