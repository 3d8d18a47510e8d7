from datetime import date, datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field


class ExcludedPatient(BaseModel):
    patient_id: int
    reason: str


class GenerationError(BaseModel):
    prescription_id: int
    error: str


class GenerationResult(BaseModel):
    """Aggregate report of one generation run for one date."""
    target_date: date
    success: bool = True
    skipped: bool = False  # completion marker already present
    prescriptions_processed: int = 0
    records_generated: int = 0
    already_existing: int = 0
    excluded_patients: List[ExcludedPatient] = Field(default_factory=list)
    errors: List[GenerationError] = Field(default_factory=list)
    message: str = ""


class BatchGenerationResult(BaseModel):
    start_date: date
    end_date: date
    total_records: int
    days: List[GenerationResult]


class GenerationRequest(BaseModel):
    target_date: Optional[date] = None
    patient_id: Optional[int] = None
    force: bool = False


class BatchGenerationRequest(BaseModel):
    start_date: date
    end_date: date
    patient_id: Optional[int] = None


class DailyTaskResponse(BaseModel):
    task_name: str
    task_date: date
    status: str
    completed_at: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True
