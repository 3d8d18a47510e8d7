"""
Three-step medication workflow: 執藥 (preparation) → 核藥 (verification) → 派藥 (dispensing).

Every transition is one conditional update at the store, conditioned on the
step still being pending and its predecessor being completed. Two staff
members racing on the same occurrence cannot both win: the loser gets
PreconditionFailed and must re-fetch.

Dispensing runs the inspection evaluator first unless the caller already
declared a failure reason; a blocking rule forces the step to failed with
reason 略去, whatever the caller intended.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.config import settings
from app.core.exceptions import (
    OccurrenceNotFound,
    PreconditionFailed,
    StoreError,
    WorkflowError,
    WorkflowValidationError,
)
from app.models.enums import FailureReason, StepStatus, WorkflowStep
from app.models.workflow_record import MedicationWorkflowRecord
from app.schemas.inspection import InspectionCheckResult
from app.services.store import WorkflowStore
from app.workflow.inspection import check_prescription_inspection_rules, normalize_fresh_reading

logger = logging.getLogger(__name__)

FRESH_READING_NOTE = "派藥前檢測"


@dataclass
class DispenseOutcome:
    record: MedicationWorkflowRecord
    blocked: bool = False
    check_result: Optional[InspectionCheckResult] = None


def _require_staff(staff_id: Optional[str], record_id: int, step: WorkflowStep) -> str:
    if not staff_id or not str(staff_id).strip():
        raise WorkflowValidationError("staff_id is required", record_id=record_id, step=step.value)
    return str(staff_id).strip()


def validate_failure_reason(
    failure_reason: Optional[str],
    custom_reason: Optional[str],
    record_id: Optional[int] = None,
    step: Optional[WorkflowStep] = None,
) -> Optional[str]:
    """Return the canonical reason value, or None when no reason was given."""
    if failure_reason is None or failure_reason == "":
        return None
    step_name = step.value if step else None
    try:
        reason = FailureReason(failure_reason)
    except ValueError:
        raise WorkflowValidationError(
            f"Unknown failure reason: {failure_reason}", record_id=record_id, step=step_name
        )
    if reason == FailureReason.OTHER and not (custom_reason or "").strip():
        raise WorkflowValidationError(
            f"A custom reason is required when the failure reason is {FailureReason.OTHER.value}",
            record_id=record_id,
            step=step_name,
        )
    return reason.value


def _advance(
    db: Session,
    record_id: int,
    step: WorkflowStep,
    staff_id: Optional[str],
    failure_reason: Optional[str] = None,
    custom_reason: Optional[str] = None,
) -> MedicationWorkflowRecord:
    staff_id = _require_staff(staff_id, record_id, step)
    reason = validate_failure_reason(failure_reason, custom_reason, record_id, step)
    new_status = StepStatus.FAILED if reason else StepStatus.COMPLETED

    store = WorkflowStore(db)
    try:
        record = store.update_occurrence_step(
            record_id,
            step,
            expected_status=StepStatus.PENDING,
            new_status=new_status,
            staff_id=staff_id,
            reason=reason,
            custom_reason=custom_reason if reason == FailureReason.OTHER.value else None,
        )
        db.commit()
    except WorkflowError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to update {step.value}: {e}", record_id=record_id, step=step.value) from e

    logger.info(f"[Workflow] Record {record_id} {step.value} -> {new_status.value} by {staff_id}")
    AuditLog.log_transition(record_id, step.value, new_status.value, staff_id, record.patient_id, reason, custom_reason)
    return record


def prepare_medication(
    db: Session,
    record_id: int,
    staff_id: str,
    failure_reason: Optional[str] = None,
    custom_reason: Optional[str] = None,
) -> MedicationWorkflowRecord:
    """執藥: preparation pending → completed (or failed when a reason is given)."""
    return _advance(db, record_id, WorkflowStep.PREPARATION, staff_id, failure_reason, custom_reason)


def verify_medication(
    db: Session,
    record_id: int,
    staff_id: str,
    failure_reason: Optional[str] = None,
    custom_reason: Optional[str] = None,
) -> MedicationWorkflowRecord:
    """核藥: requires preparation completed."""
    return _advance(db, record_id, WorkflowStep.VERIFICATION, staff_id, failure_reason, custom_reason)


def dispense_medication(
    db: Session,
    record_id: int,
    staff_id: str,
    failure_reason: Optional[str] = None,
    custom_reason: Optional[str] = None,
    fresh_reading: Optional[Dict[str, float]] = None,
    notes: Optional[str] = None,
) -> DispenseOutcome:
    """
    派藥: requires verification completed.

    With a caller-declared failure reason the evaluator is not consulted.
    Otherwise the inspection rules decide: a blocking rule forces failed
    (reason 略去, result snapshot stored); a pass completes the step and
    stores the passing snapshot. A fresh reading is also saved as a health
    record in the same transaction.

    Raises:
        WorkflowValidationError, OccurrenceNotFound, PreconditionFailed, StoreError
    """
    step = WorkflowStep.DISPENSING
    staff_id = _require_staff(staff_id, record_id, step)
    reason = validate_failure_reason(failure_reason, custom_reason, record_id, step)
    reading = normalize_fresh_reading(fresh_reading)

    store = WorkflowStore(db)
    try:
        if reason:
            record = store.update_occurrence_step(
                record_id,
                step,
                expected_status=StepStatus.PENDING,
                new_status=StepStatus.FAILED,
                staff_id=staff_id,
                reason=reason,
                custom_reason=custom_reason if reason == FailureReason.OTHER.value else None,
                notes=notes,
            )
            db.commit()
            logger.info(f"[Workflow] Record {record_id} dispensing failed by {staff_id}: {reason}")
            AuditLog.log_transition(record_id, step.value, StepStatus.FAILED.value, staff_id,
                                    record.patient_id, reason, custom_reason)
            return DispenseOutcome(record=record)

        current = store.get_occurrence(record_id)
        if current is None:
            raise OccurrenceNotFound(f"Workflow record {record_id} not found", record_id=record_id, step=step.value)
        if current.verification_status != StepStatus.COMPLETED.value:
            raise PreconditionFailed(
                f"verification must be completed before dispensing (currently {current.verification_status})",
                record_id=record_id,
                step=step.value,
                patient_id=current.patient_id,
            )

        check = check_prescription_inspection_rules(store, current.prescription_id, current.patient_id, reading)

        if reading:
            store.add_health_record(
                current.patient_id,
                settings.facility_today(),
                settings.facility_now().strftime("%H:%M"),
                reading,
                notes=FRESH_READING_NOTE,
                recorded_by=staff_id,
            )

        blocked = not check.can_dispense
        record = store.update_occurrence_step(
            record_id,
            step,
            expected_status=StepStatus.PENDING,
            new_status=StepStatus.FAILED if blocked else StepStatus.COMPLETED,
            staff_id=staff_id,
            reason=FailureReason.SKIPPED.value if blocked else None,
            snapshot=check.snapshot(),
            notes=notes,
        )
        db.commit()
    except WorkflowError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to dispense: {e}", record_id=record_id, step=step.value) from e

    if blocked:
        logger.warning(f"[Workflow] Record {record_id} dispensing blocked by inspection: {check.message}")
        AuditLog.log_inspection_veto(
            record_id, record.patient_id, staff_id, [r.model_dump() for r in check.blocked_rules]
        )
    else:
        logger.info(f"[Workflow] Record {record_id} dispensed by {staff_id}")
        AuditLog.log_transition(record_id, step.value, StepStatus.COMPLETED.value, staff_id, record.patient_id)
    return DispenseOutcome(record=record, blocked=blocked, check_result=check)


def revert_prescription_workflow_step(db: Session, record_id: int, step) -> MedicationWorkflowRecord:
    """Reset a step and every later step back to pending."""
    try:
        step = WorkflowStep(step)
    except ValueError:
        raise WorkflowValidationError(f"Unknown workflow step: {step}", record_id=record_id)

    store = WorkflowStore(db)
    try:
        record = store.reset_steps(record_id, step)
        db.commit()
    except WorkflowError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to revert {step.value}: {e}", record_id=record_id, step=step.value) from e

    reset = [s.value for s in step.with_later_steps()]
    logger.info(f"[Workflow] Record {record_id} reverted: {', '.join(reset)} -> pending")
    AuditLog.log_revert(record_id, step.value, reset)
    return record
