"""
Delivery Mitra — agent dashboard.

Mobile web view for delivery partners: sign in by phone, work the current
assignment (Pending → Out for Delivery → Delivered), capture proof of delivery.
Run: uvicorn mitra.main:app --app-dir api --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mitra.config import settings
from mitra.routers import dashboard
from mitra.services import session_store, store_gateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("🚀 Delivery Mitra starting (store: %s)", settings.SUPABASE_URL)
    yield
    await store_gateway.close()
    await session_store.close()
    logger.info("🛑 Delivery Mitra shut down.")


app = FastAPI(
    title=settings.BRAND_NAME,
    description="Delivery partner dashboard: current assignment and proof of delivery",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────
app.include_router(dashboard.router, tags=["Dashboard"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.BRAND_NAME}
