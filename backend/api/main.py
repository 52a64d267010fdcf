"""
CargoDesk API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.errors import register_exception_handlers
from db.session import dispose_engine

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("CargoDesk API starting up", version=settings.app_version, env=settings.app_env)
    yield
    await dispose_engine()
    logger.info("CargoDesk API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Multi-tenant package forwarding: intake, billing, payments and warehouse integration",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

register_exception_handlers(app)

# Import and register routers
from api.v1.routers import (
    inventory,
    invoices,
    packages,
    payments,
    prealerts,
    pricing,
    reports,
    warehouse_api,
)

app.include_router(packages.router)
app.include_router(packages.warehouse_router)
app.include_router(packages.customer_router)
app.include_router(prealerts.router)
app.include_router(prealerts.customer_router)
app.include_router(invoices.router)
app.include_router(invoices.bills_router)
app.include_router(invoices.customer_router)
app.include_router(payments.router)
app.include_router(payments.admin_router)
app.include_router(pricing.router)
app.include_router(inventory.router)
app.include_router(reports.router)
app.include_router(warehouse_api.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
