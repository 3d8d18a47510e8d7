"""
Background daily generation.

Runs the occurrence generator once at startup and then re-checks every
GENERATION_CHECK_INTERVAL_SECONDS. The completion marker makes repeat runs
for the same facility day cheap no-ops; the first check after midnight
(UTC+8) generates the new day.

A failed run is logged and never takes the application down: staff keep
working with whatever occurrences already exist.
"""
import asyncio
import logging
from datetime import date
from typing import Optional

from app.core.config import settings
from app.core.exceptions import StoreError
from app.db.session import SessionLocal
from app.schemas.generation import GenerationResult
from app.workflow.generator import generate_daily_workflow_records

logger = logging.getLogger(__name__)

_scheduler_running = False
_scheduler_task: Optional[asyncio.Task] = None


def run_daily_generation(target_date: Optional[date] = None) -> Optional[GenerationResult]:
    """Generate for target_date (default facility today) in a session of its own. Returns None on failure."""
    db = SessionLocal()
    try:
        result = generate_daily_workflow_records(db, target_date)
        if not result.skipped:
            logger.info(f"[DailyGeneration] {result.message}")
        return result
    except StoreError as e:
        logger.error(f"[DailyGeneration] Generation failed, continuing with existing records: {e.message}")
    except Exception as e:
        logger.error(f"[DailyGeneration] Unexpected error: {e}", exc_info=True)
    finally:
        db.close()
    return None


async def _generation_loop():
    global _scheduler_running
    _scheduler_running = True
    interval = settings.GENERATION_CHECK_INTERVAL_SECONDS
    logger.info(f"[DailyGeneration] Scheduler started. Interval: {interval}s")

    while _scheduler_running:
        await asyncio.sleep(interval)
        if not _scheduler_running:
            break
        # generator uses a blocking session; keep it off the event loop
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, run_daily_generation)


def start_generation_scheduler():
    """Start the background loop. Called from FastAPI lifespan."""
    global _scheduler_task
    try:
        _scheduler_task = asyncio.create_task(_generation_loop())
        logger.info("[DailyGeneration] Generation scheduler initialized")
    except RuntimeError as e:
        logger.error(f"[DailyGeneration] Failed to start scheduler: {e}")


def stop_generation_scheduler():
    """Stop the loop. Called from FastAPI shutdown."""
    global _scheduler_running, _scheduler_task
    _scheduler_running = False
    if _scheduler_task is not None:
        _scheduler_task.cancel()
        _scheduler_task = None
    logger.info("[DailyGeneration] Scheduler stopped")
