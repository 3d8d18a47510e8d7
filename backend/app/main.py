"""
Care-home medication workflow backend.

ARCHITECTURE:
- FastAPI backend: workflow rules, step ordering, persistence
- Relational store (SQLite locally): source of truth for every occurrence
- Nurse station UI: calls the /workflow endpoints for 執藥 → 核藥 → 派藥

SAFETY MODEL:
- Each step advances only through a conditional update on the stored status
- Inspection rules can veto dispensing; the veto is recorded, never silent
- Daily generation failures are logged and never stop the API from serving
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import generation, patients, prescriptions, workflow
from app.core.config import settings
from app.db.init_db import init_db
from app.workflow.daily_scheduler import (
    run_daily_generation,
    start_generation_scheduler,
    stop_generation_scheduler,
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Initialize database tables
    2. Generate today's occurrences (non-fatal)
    3. Start the daily generation scheduler

    Shutdown:
    1. Stop the scheduler
    """
    try:
        logger.info("[*] Initializing database...")
        init_db()
        logger.info("[OK] Database initialized")

        if settings.GENERATE_ON_STARTUP:
            logger.info("[*] Generating today's medication workflow...")
            run_daily_generation()
            start_generation_scheduler()
        else:
            logger.warning("[WARN] Daily generation disabled (GENERATE_ON_STARTUP=false)")
    except Exception as e:
        logger.error(f"[ERROR] Startup error: {e}", exc_info=True)

    yield

    try:
        if settings.GENERATE_ON_STARTUP:
            stop_generation_scheduler()
    except Exception as e:
        logger.error(f"[ERROR] Shutdown error: {e}")


app = FastAPI(
    title="Care Home Medication Workflow API",
    description="Daily occurrence generation, inspection rules and the 執藥 → 核藥 → 派藥 workflow.",
    version="0.1.0",
    lifespan=lifespan,
)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Accept",
        "Origin",
    ],
    max_age=600,
    expose_headers=["Content-Type"],
)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response

app.include_router(patients.router, prefix="/patients", tags=["patients"])
app.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])
app.include_router(workflow.router, prefix="/workflow", tags=["workflow"])
app.include_router(generation.router, prefix="/generation", tags=["generation"])


@app.get("/health")
def health():
    return {"status": "ok", "facility_date": settings.facility_today().isoformat()}
