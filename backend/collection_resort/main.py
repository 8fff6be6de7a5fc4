"""
Collection Resort Engine - FastAPI Application Entry Point.

Ranks the products of manual Shopify collections from sales, recency,
inventory, tag rules and featured pins, and applies the order through the
Admin API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import text

from collection_resort.config import get_settings
from collection_resort.database import Base, engine, get_db
from collection_resort.routers import collections, reports


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup: Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    yield

    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Merchandising ranking and reorder engine for Shopify collections",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(collections.router, prefix="/collections", tags=["Collections"])
app.include_router(reports.router, prefix="/reports", tags=["Reports"])


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Database disconnected")


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "status": "operational"}
