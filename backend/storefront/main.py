"""
HANK Storefront - FastAPI Application Entry Point.

Cart, coupon preview and the PayTR checkout pipeline, plus the back-office
endpoints for inventory and order tracking.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import get_settings
from storefront.database import engine, get_db, Base
from storefront.routers import admin, cart, coupons, payment

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    yield

    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Storefront cart, checkout and PayTR payment pipeline",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.FRONTEND_URL,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        # PayTR's iframe lives on their domain; ours is never framed
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


app.add_middleware(SecurityHeadersMiddleware)

# Include Routers
app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
app.include_router(coupons.router, prefix="/api/coupons", tags=["Coupons"])
app.include_router(payment.router, prefix="/api/payment", tags=["Payment"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        # Return 503 so load balancers know to stop sending traffic
        raise HTTPException(status_code=503, detail="Database disconnected")


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "status": "operational"}
