"""
FrameLedger Backend API
FastAPI application that turns forwarded optical-vendor order emails into
frame inventory.

Environment variables
---------------------
CORS_ORIGINS   Extra allowed origins, comma-separated.
HOST_PORT      Port reported in the startup log (default: 8000).
"""

import logging
import os
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.routers import catalog, email_intake, inventory, orders
from app.db import supabase_admin
from app.services.catalog_client import close_catalog_client

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="FrameLedger API",
    description="Vendor order email ingestion and frame inventory tracking",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Local dev origins plus anything listed in CORS_ORIGINS, e.g.:
        CORS_ORIGINS=https://frameledger.vercel.app,https://preview.frameledger.app

    Duplicates are removed while preserving order.
    """
    origins: List[str] = ["http://localhost:3000", "http://localhost:3001"]
    for origin in os.getenv("CORS_ORIGINS", "").split(","):
        origin = origin.strip()
        if origin and origin not in origins:
            origins.append(origin)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(email_intake.router, prefix="/api/email-intake", tags=["email-intake"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])


@app.on_event("startup")
async def log_startup_urls() -> None:
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("FrameLedger API running at http://localhost:%s", host_port)


@app.on_event("shutdown")
async def close_enrichment_client() -> None:
    await close_catalog_client()


@app.get("/")
async def root():
    return {"message": "FrameLedger API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection with a one-row SELECT from orders.
    Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table("orders").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
