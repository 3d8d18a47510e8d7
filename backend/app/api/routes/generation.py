"""Manual occurrence generation and the daily completion markers."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.exceptions import WorkflowError, http_error_for
from app.models.daily_task import DailySystemTask
from app.schemas.generation import (
    BatchGenerationRequest,
    BatchGenerationResult,
    DailyTaskResponse,
    GenerationRequest,
    GenerationResult,
)
from app.workflow.generator import (
    generate_batch_workflow_records,
    generate_daily_workflow_records,
    get_overdue_daily_system_tasks,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/daily", response_model=GenerationResult)
def generate_daily(payload: GenerationRequest, db: Session = Depends(get_db)):
    """Generate one day (default facility today). Safe to repeat."""
    try:
        return generate_daily_workflow_records(
            db, payload.target_date, patient_id=payload.patient_id, force=payload.force
        )
    except WorkflowError as e:
        raise http_error_for(e)


@router.post("/batch", response_model=BatchGenerationResult)
def generate_batch(payload: BatchGenerationRequest, db: Session = Depends(get_db)):
    try:
        return generate_batch_workflow_records(
            db, payload.start_date, payload.end_date, patient_id=payload.patient_id
        )
    except WorkflowError as e:
        raise http_error_for(e)


@router.get("/tasks", response_model=list[DailyTaskResponse])
def list_tasks(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    q = db.query(DailySystemTask)
    if date_from:
        q = q.filter(DailySystemTask.task_date >= date_from)
    if date_to:
        q = q.filter(DailySystemTask.task_date <= date_to)
    return q.order_by(DailySystemTask.task_date.desc()).limit(100).all()


@router.get("/tasks/overdue", response_model=list[DailyTaskResponse])
def overdue_tasks(db: Session = Depends(get_db)):
    """Markers from earlier days that never completed."""
    try:
        return get_overdue_daily_system_tasks(db)
    except WorkflowError as e:
        raise http_error_for(e)
