from datetime import date, datetime
from typing import Optional, Any, Dict, List

from pydantic import BaseModel, field_validator

from app.schemas.inspection import InspectionCheckResult


class WorkflowRecordResponse(BaseModel):
    id: int
    prescription_id: int
    patient_id: int
    scheduled_date: date
    scheduled_time: str
    meal_timing: Optional[str] = None
    preparation_status: str
    verification_status: str
    dispensing_status: str
    preparation_staff: Optional[str] = None
    verification_staff: Optional[str] = None
    dispensing_staff: Optional[str] = None
    preparation_time: Optional[datetime] = None
    verification_time: Optional[datetime] = None
    dispensing_time: Optional[datetime] = None
    dispensing_failure_reason: Optional[str] = None
    failed_step: Optional[str] = None
    custom_failure_reason: Optional[str] = None
    inspection_check_result: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class WorkflowRecordCreate(BaseModel):
    """Manual creation path (e.g. a one-off dose added after generation ran)."""
    prescription_id: int
    patient_id: int
    scheduled_date: date
    scheduled_time: str
    meal_timing: Optional[str] = None
    notes: Optional[str] = None


class StepRequest(BaseModel):
    staff_id: str
    failure_reason: Optional[str] = None
    custom_reason: Optional[str] = None

    @field_validator("staff_id")
    @classmethod
    def staff_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("staff_id is required")
        return v.strip()


class DispenseRequest(StepRequest):
    fresh_reading: Optional[Dict[str, float]] = None
    notes: Optional[str] = None


class RevertRequest(BaseModel):
    step: str


class DispenseResponse(BaseModel):
    record: WorkflowRecordResponse
    blocked_by_inspection: bool
    inspection: Optional[InspectionCheckResult] = None


class BatchFailureRequest(BaseModel):
    patient_id: int
    scheduled_date: date
    scheduled_time: str
    reason: str
    staff_id: Optional[str] = None
    atomic: bool = True


class BatchItemFailure(BaseModel):
    record_id: int
    error: str
    message: str


class BatchFailureResponse(BaseModel):
    patient_id: int
    scheduled_date: date
    scheduled_time: str
    reason: str
    total: int
    applied: bool
    succeeded_ids: List[int]
    failures: List[BatchItemFailure]


class OverduePatientSummary(BaseModel):
    patient_id: int
    patient_name: str
    overdue_count: int
    overdue_record_ids: List[int]


class OneClickRequest(BaseModel):
    patient_id: int
    scheduled_date: date
    staff_id: str

    @field_validator("staff_id")
    @classmethod
    def staff_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("staff_id is required")
        return v.strip()


class OneClickResponse(BaseModel):
    patient_id: int
    scheduled_date: date
    action: str
    total: int
    succeeded_ids: List[int]
    hospitalized_ids: List[int]
    failures: List[BatchItemFailure]
