"""
Medication workflow: occurrence queries, the three steps, revert, batch
failure, inspection check and overdue summaries.

Domain errors map to HTTP as: not found 404, precondition 409, validation
400, store 503. An inspection block is a normal 200 response with
blocked_by_inspection set.
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.config import settings
from app.core.exceptions import BusinessError, StoreError, WorkflowError, http_error_for
from app.models.enums import StepStatus
from app.models.prescription import Prescription
from app.models.workflow_record import MedicationWorkflowRecord
from app.schemas.inspection import InspectionCheckRequest, InspectionCheckResult
from app.schemas.workflow import (
    BatchFailureRequest,
    BatchFailureResponse,
    DispenseRequest,
    DispenseResponse,
    OneClickRequest,
    OneClickResponse,
    OverduePatientSummary,
    RevertRequest,
    StepRequest,
    WorkflowRecordCreate,
    WorkflowRecordResponse,
)
from app.services.store import WorkflowStore
from app.workflow import queries
from app.workflow.batch import (
    batch_dispense,
    batch_dispense_immediate,
    batch_prepare,
    batch_set_dispense_failure,
    batch_verify,
)
from app.workflow.inspection import check_prescription_inspection_rules
from app.workflow.schedule import normalize_slot
from app.workflow.state_machine import (
    dispense_medication,
    prepare_medication,
    revert_prescription_workflow_step,
    verify_medication,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/records", response_model=list[WorkflowRecordResponse])
def list_records(
    patient_id: Optional[int] = Query(None),
    scheduled_date: Optional[date] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    prescription_id: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
):
    """Occurrences ordered by scheduled date, then time."""
    try:
        return queries.fetch_prescription_workflow_records(
            db,
            patient_id=patient_id,
            scheduled_date=scheduled_date,
            date_from=date_from,
            date_to=date_to,
            prescription_ids=prescription_id,
        )
    except WorkflowError as e:
        raise http_error_for(e)


@router.post("/records", response_model=WorkflowRecordResponse)
def create_record(payload: WorkflowRecordCreate, db: Session = Depends(get_db)):
    """Add one occurrence by hand (e.g. a dose added after the day was generated)."""
    rx = db.query(Prescription).filter(Prescription.id == payload.prescription_id).first()
    if not rx:
        raise BusinessError.not_found("Prescription", f"id={payload.prescription_id}")
    if rx.patient_id != payload.patient_id:
        raise BusinessError.bad_request("prescription does not belong to this patient")
    try:
        slot = normalize_slot(payload.scheduled_time)
    except ValueError:
        raise BusinessError.bad_request(f"Invalid scheduled time: {payload.scheduled_time}")

    try:
        same_day = queries.fetch_prescription_workflow_records(
            db, scheduled_date=payload.scheduled_date, prescription_ids=[rx.id]
        )
    except WorkflowError as e:
        raise http_error_for(e)
    existing = queries.get_record_for_slot(same_day, rx.id, payload.scheduled_date, slot)
    if existing is not None:
        raise BusinessError.conflict(
            f"Occurrence {existing.id} already exists for prescription {rx.id} on {payload.scheduled_date} {slot}"
        )

    record = MedicationWorkflowRecord(
        prescription_id=rx.id,
        patient_id=rx.patient_id,
        scheduled_date=payload.scheduled_date,
        scheduled_time=slot,
        meal_timing=payload.meal_timing or rx.meal_timing,
        notes=payload.notes,
        preparation_status=StepStatus.PENDING.value,
        verification_status=StepStatus.PENDING.value,
        dispensing_status=StepStatus.PENDING.value,
    )
    try:
        created = WorkflowStore(db).create_occurrence(record)
        if created is None:
            db.rollback()
            raise BusinessError.conflict(
                f"An occurrence already exists for prescription {rx.id} on {payload.scheduled_date} {slot}"
            )
        db.commit()
        db.refresh(created)
    except SQLAlchemyError as e:
        db.rollback()
        raise http_error_for(StoreError(f"Failed to create occurrence: {e}", patient_id=rx.patient_id))
    logger.info(f"[Workflow] Manual occurrence {created.id}: rx={rx.id} {created.scheduled_date} {slot}")
    return created


@router.get("/records/{record_id}", response_model=WorkflowRecordResponse)
def get_record(record_id: int, db: Session = Depends(get_db)):
    record = WorkflowStore(db).get_occurrence(record_id)
    if not record:
        raise BusinessError.not_found("Workflow record", f"id={record_id}")
    return record


@router.post("/records/{record_id}/prepare", response_model=WorkflowRecordResponse)
def prepare(record_id: int, payload: StepRequest, db: Session = Depends(get_db)):
    try:
        return prepare_medication(db, record_id, payload.staff_id, payload.failure_reason, payload.custom_reason)
    except WorkflowError as e:
        raise http_error_for(e)


@router.post("/records/{record_id}/verify", response_model=WorkflowRecordResponse)
def verify(record_id: int, payload: StepRequest, db: Session = Depends(get_db)):
    try:
        return verify_medication(db, record_id, payload.staff_id, payload.failure_reason, payload.custom_reason)
    except WorkflowError as e:
        raise http_error_for(e)


@router.post("/records/{record_id}/dispense", response_model=DispenseResponse)
def dispense(record_id: int, payload: DispenseRequest, db: Session = Depends(get_db)):
    try:
        outcome = dispense_medication(
            db,
            record_id,
            payload.staff_id,
            failure_reason=payload.failure_reason,
            custom_reason=payload.custom_reason,
            fresh_reading=payload.fresh_reading,
            notes=payload.notes,
        )
    except WorkflowError as e:
        raise http_error_for(e)
    return DispenseResponse(
        record=WorkflowRecordResponse.model_validate(outcome.record),
        blocked_by_inspection=outcome.blocked,
        inspection=outcome.check_result,
    )


@router.post("/records/{record_id}/revert", response_model=WorkflowRecordResponse)
def revert(record_id: int, payload: RevertRequest, db: Session = Depends(get_db)):
    try:
        return revert_prescription_workflow_step(db, record_id, payload.step)
    except WorkflowError as e:
        raise http_error_for(e)


@router.post("/batch-failure", response_model=BatchFailureResponse)
def batch_failure(payload: BatchFailureRequest, db: Session = Depends(get_db)):
    """Fail every pending dose of a patient at one slot (回家 / 入院)."""
    try:
        outcome = batch_set_dispense_failure(
            db,
            payload.patient_id,
            payload.scheduled_date,
            payload.scheduled_time,
            payload.reason,
            staff_id=payload.staff_id,
            atomic=payload.atomic,
        )
    except WorkflowError as e:
        raise http_error_for(e)
    return BatchFailureResponse(
        patient_id=outcome.patient_id,
        scheduled_date=outcome.scheduled_date,
        scheduled_time=outcome.scheduled_time,
        reason=outcome.reason,
        total=outcome.total,
        applied=outcome.applied,
        succeeded_ids=outcome.succeeded_ids,
        failures=outcome.failures,
    )


ONE_CLICK_ACTIONS = {
    "prepare": batch_prepare,
    "verify": batch_verify,
    "dispense": batch_dispense,
    "dispense-immediate": batch_dispense_immediate,
}


@router.post("/one-click/{action}", response_model=OneClickResponse)
def one_click(action: str, payload: OneClickRequest, db: Session = Depends(get_db)):
    """Run one step over all of a patient's eligible occurrences for a day."""
    run = ONE_CLICK_ACTIONS.get(action)
    if run is None:
        raise BusinessError.not_found("One-click action", action)
    try:
        outcome = run(db, payload.patient_id, payload.scheduled_date, payload.staff_id)
    except WorkflowError as e:
        raise http_error_for(e)
    return OneClickResponse(
        patient_id=outcome.patient_id,
        scheduled_date=outcome.scheduled_date,
        action=outcome.action,
        total=outcome.total,
        succeeded_ids=outcome.succeeded_ids,
        hospitalized_ids=outcome.hospitalized_ids,
        failures=outcome.failures,
    )


@router.post("/inspection-check", response_model=InspectionCheckResult)
def inspection_check(payload: InspectionCheckRequest, db: Session = Depends(get_db)):
    """Preview the inspection outcome without dispensing. Nothing is written."""
    try:
        return check_prescription_inspection_rules(
            WorkflowStore(db), payload.prescription_id, payload.patient_id, payload.fresh_reading
        )
    except WorkflowError as e:
        raise http_error_for(e)
    except SQLAlchemyError as e:
        raise http_error_for(StoreError(f"Inspection check failed: {e}", patient_id=payload.patient_id))


# ==============================================================================
# OVERDUE SUMMARIES (dashboard reminders)
# ==============================================================================

@router.get("/overdue/patients", response_model=list[OverduePatientSummary])
def overdue_patients(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Resident patients with overdue doses, most overdue first. Defaults to the last 7 days."""
    today = settings.facility_today()
    try:
        return queries.get_patients_with_overdue_workflow(
            db,
            date_from=date_from or today - timedelta(days=6),
            date_to=date_to or today,
        )
    except WorkflowError as e:
        raise http_error_for(e)


@router.get("/overdue/by-date")
def overdue_by_date(
    date_from: date = Query(...),
    date_to: date = Query(...),
    patient_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    if date_to < date_from:
        raise BusinessError.bad_request("date_to must not be before date_from")
    if (date_to - date_from).days >= settings.BATCH_GENERATION_MAX_DAYS:
        raise BusinessError.bad_request(f"Date range is limited to {settings.BATCH_GENERATION_MAX_DAYS} days")
    try:
        records = queries.fetch_prescription_workflow_records(
            db, patient_id=patient_id, date_from=date_from, date_to=date_to
        )
    except WorkflowError as e:
        raise http_error_for(e)
    dates = [date_from + timedelta(days=i) for i in range((date_to - date_from).days + 1)]
    counts = queries.calculate_overdue_count_by_date(records, dates)
    return {d.isoformat(): n for d, n in counts.items()}


@router.get("/overdue/by-preparation-method")
def overdue_by_preparation_method(
    scheduled_date: Optional[date] = Query(None),
    patient_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    try:
        records = queries.fetch_prescription_workflow_records(
            db, patient_id=patient_id, scheduled_date=scheduled_date or settings.facility_today()
        )
        return queries.count_overdue_by_preparation_method(db, records)
    except WorkflowError as e:
        raise http_error_for(e)
    except SQLAlchemyError as e:
        raise http_error_for(StoreError(f"Failed to count overdue records: {e}", patient_id=patient_id))
