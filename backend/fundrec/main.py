"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from sqlalchemy import text

from fundrec.config import get_settings
from fundrec.models import Base
from fundrec.models.base import engine, SessionLocal
from fundrec.api.v1 import router as api_v1_router
from fundrec.services.metrics_collector import get_metrics_accumulator

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

METRICS_FLUSH_INTERVAL_SECONDS = 60


async def flush_metrics_periodically(interval: float = METRICS_FLUSH_INTERVAL_SECONDS):
    """Flush the in-process accumulator and log the snapshot once per interval."""
    accumulator = get_metrics_accumulator()
    while True:
        await asyncio.sleep(interval)
        snapshot = accumulator.flush()
        if snapshot:
            logger.info(
                "Metrics flushed: config=%s requests=%d avg=%.2fms p95=%.2fms lift=%.2f exploration=%d",
                snapshot.config_name,
                snapshot.request_count,
                snapshot.avg_processing_time_ms,
                snapshot.p95_processing_time_ms,
                snapshot.avg_score_lift,
                snapshot.total_exploration_slots,
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting %s...", settings.app_name)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables verified")
    flusher = asyncio.create_task(flush_metrics_periodically())
    yield
    logger.info("Shutting down...")
    flusher.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await flusher
    snapshot = get_metrics_accumulator().flush()
    if snapshot:
        logger.info("Final metrics flush: %d requests", snapshot.request_count)
    engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Personalized ranking, event logging and interleaving experiments for funding programs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/health")
def health_check():
    return {"status": "healthy", "app": settings.app_name}


@app.get("/health/detailed")
def detailed_health_check():
    checks = {}

    # Database
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1")).scalar()
            checks["database"] = {"ok": True}
    except Exception as e:
        checks["database"] = {"ok": False, "message": str(e)}

    # Redis (rate-limit counters; the log fails open without it)
    try:
        r = redis.from_url(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
        r.ping()
        checks["redis"] = {"ok": True}
    except Exception as e:
        checks["redis"] = {"ok": False, "message": str(e)}

    all_ok = all(check.get("ok", False) for check in checks.values())
    status = "healthy" if all_ok else "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
