"""
Batch operations on one resident's occurrences.

Batch failure: fail a whole time slot for one resident in one action.
Used when a patient-level event (回家 went home, 入院 admitted to hospital)
makes every dose at that slot impossible. Each candidate goes through the
same conditional update as a single declared dispensing failure, inside its
own savepoint, so the outcome can say exactly which occurrences failed.

One-click processing (一鍵執藥 / 一鍵核藥 / 一鍵派藥) walks a resident's
occurrences for one day and runs the normal step transitions on each one.
Each item commits on its own; a failed item is reported and the rest go on.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.exceptions import StoreError, WorkflowError, WorkflowValidationError
from app.models.enums import (
    BATCHABLE_REASONS,
    AdministrationRoute,
    FailureReason,
    PreparationMethod,
    StepStatus,
    WorkflowStep,
)
from app.schemas.workflow import BatchItemFailure
from app.services.store import WorkflowStore
from app.workflow.eligibility import REASON_HOSPITALIZED, check_eligible_patients
from app.workflow.schedule import normalize_slot
from app.workflow.state_machine import dispense_medication, prepare_medication, verify_medication

logger = logging.getLogger(__name__)


@dataclass
class BatchFailureOutcome:
    patient_id: int
    scheduled_date: date
    scheduled_time: str
    reason: str
    total: int = 0
    applied: bool = True
    succeeded_ids: List[int] = field(default_factory=list)
    failures: List[BatchItemFailure] = field(default_factory=list)


def batch_set_dispense_failure(
    db: Session,
    patient_id: int,
    scheduled_date: date,
    scheduled_time: str,
    reason: str,
    staff_id: Optional[str] = None,
    atomic: bool = True,
) -> BatchFailureOutcome:
    """
    Fail dispensing for every pending occurrence of a patient at one slot.

    Args:
        atomic: When True (default) one failed item rolls back the whole
            batch; the outcome then has applied=False and lists every
            occurrence as failed or rolled back. When False, successful
            items are kept and only the failures are reported.

    Raises:
        WorkflowValidationError: reason is not batchable, or the slot is malformed
        StoreError: the candidates could not be read, or the commit failed
    """
    try:
        batch_reason = FailureReason(reason)
    except ValueError:
        raise WorkflowValidationError(f"Unknown failure reason: {reason}", patient_id=patient_id)
    if batch_reason not in BATCHABLE_REASONS:
        raise WorkflowValidationError(
            f"{batch_reason.value} applies to a single occurrence only; batch reasons are "
            f"{', '.join(r.value for r in FailureReason if r in BATCHABLE_REASONS)}",
            patient_id=patient_id,
        )
    try:
        slot = normalize_slot(scheduled_time)
    except ValueError:
        raise WorkflowValidationError(f"Invalid scheduled time: {scheduled_time}", patient_id=patient_id)

    outcome = BatchFailureOutcome(
        patient_id=patient_id,
        scheduled_date=scheduled_date,
        scheduled_time=slot,
        reason=batch_reason.value,
    )
    step = WorkflowStep.DISPENSING
    store = WorkflowStore(db)

    try:
        candidates = store.get_workflow_occurrences(
            patient_id=patient_id,
            scheduled_date=scheduled_date,
            scheduled_time=slot,
            dispensing_status=StepStatus.PENDING.value,
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load occurrences: {e}", step=step.value, patient_id=patient_id) from e

    outcome.total = len(candidates)
    logger.info(
        f"[BatchFailure] patient={patient_id} {scheduled_date} {slot} reason={batch_reason.value}: "
        f"{outcome.total} pending occurrences"
    )

    for record in candidates:
        try:
            with db.begin_nested():
                store.update_occurrence_step(
                    record.id,
                    step,
                    expected_status=StepStatus.PENDING,
                    new_status=StepStatus.FAILED,
                    staff_id=staff_id,
                    reason=batch_reason.value,
                )
            outcome.succeeded_ids.append(record.id)
        except WorkflowError as e:
            logger.warning(f"[BatchFailure] Record {record.id} not failed: {e.message}")
            outcome.failures.append(BatchItemFailure(record_id=record.id, error=e.kind, message=e.message))
        except SQLAlchemyError as e:
            logger.warning(f"[BatchFailure] Record {record.id} not failed: {e}")
            outcome.failures.append(BatchItemFailure(record_id=record.id, error=StoreError.kind, message=str(e)))

    try:
        if atomic and outcome.failures:
            db.rollback()
            outcome.applied = False
            for record_id in outcome.succeeded_ids:
                outcome.failures.append(BatchItemFailure(
                    record_id=record_id,
                    error="rolled_back",
                    message="Not applied: another occurrence in the batch failed",
                ))
            outcome.succeeded_ids = []
        else:
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"Failed to commit batch failure: {e}", step=step.value, patient_id=patient_id) from e

    AuditLog.log_batch_failure(
        patient_id,
        scheduled_date.isoformat(),
        slot,
        batch_reason.value,
        outcome.succeeded_ids,
        [f.record_id for f in outcome.failures],
        outcome.applied,
    )
    return outcome


# ==============================================================================
# ONE-CLICK PROCESSING
# ==============================================================================

DONE = "done"
HOSPITALIZED = "hospitalized"
BLOCKED = "blocked"


@dataclass
class OneClickOutcome:
    patient_id: int
    scheduled_date: date
    action: str
    total: int = 0
    succeeded_ids: List[int] = field(default_factory=list)
    hospitalized_ids: List[int] = field(default_factory=list)
    failures: List[BatchItemFailure] = field(default_factory=list)


def _require_batch_staff(staff_id: Optional[str], patient_id: int) -> str:
    if not staff_id or not str(staff_id).strip():
        raise WorkflowValidationError("staff_id is required", patient_id=patient_id)
    return str(staff_id).strip()


def _day_occurrences(db: Session, patient_id: int, scheduled_date: date):
    try:
        return WorkflowStore(db).get_workflow_occurrences(patient_id=patient_id, scheduled_date=scheduled_date)
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load occurrences: {e}", patient_id=patient_id) from e


def _is_hospitalized(db: Session, patient_id: int, scheduled_date: date) -> bool:
    try:
        reasons = check_eligible_patients(db, scheduled_date).excluded_reasons()
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to read patient status: {e}", patient_id=patient_id) from e
    return reasons.get(patient_id) == REASON_HOSPITALIZED


def _run_each(outcome: OneClickOutcome, record_ids: List[int], apply) -> OneClickOutcome:
    outcome.total = len(record_ids)
    for record_id in record_ids:
        try:
            result = apply(record_id)
        except WorkflowError as e:
            logger.warning(f"[OneClick] {outcome.action} record {record_id} failed: {e.message}")
            outcome.failures.append(BatchItemFailure(record_id=record_id, error=e.kind, message=e.message))
            continue
        if result == HOSPITALIZED:
            outcome.hospitalized_ids.append(record_id)
        elif result == BLOCKED:
            outcome.failures.append(BatchItemFailure(
                record_id=record_id,
                error="blocked_by_inspection",
                message=f"Dispensing failed with {FailureReason.SKIPPED.value}: inspection rule not met",
            ))
        else:
            outcome.succeeded_ids.append(record_id)

    logger.info(
        f"[OneClick] {outcome.action} patient={outcome.patient_id} {outcome.scheduled_date}: "
        f"{len(outcome.succeeded_ids)} done, {len(outcome.hospitalized_ids)} 入院, "
        f"{len(outcome.failures)} failed of {outcome.total}"
    )
    return outcome


def _dispense_one(db: Session, record_id: int, staff_id: str, hospitalized: bool) -> str:
    if hospitalized:
        dispense_medication(db, record_id, staff_id, failure_reason=FailureReason.HOSPITAL_ADMISSION.value)
        return HOSPITALIZED
    return BLOCKED if dispense_medication(db, record_id, staff_id).blocked else DONE


def batch_prepare(db: Session, patient_id: int, scheduled_date: date, staff_id: str) -> OneClickOutcome:
    """一鍵執藥: every pending preparation of the day, except immediate-preparation orders."""
    staff_id = _require_batch_staff(staff_id, patient_id)
    record_ids = [
        r.id for r in _day_occurrences(db, patient_id, scheduled_date)
        if r.preparation_status == StepStatus.PENDING.value
        and r.prescription.preparation_method != PreparationMethod.IMMEDIATE.value
    ]

    def apply(record_id):
        prepare_medication(db, record_id, staff_id)
        return DONE

    return _run_each(OneClickOutcome(patient_id, scheduled_date, "prepare"), record_ids, apply)


def batch_verify(db: Session, patient_id: int, scheduled_date: date, staff_id: str) -> OneClickOutcome:
    """一鍵核藥: pending verifications whose preparation is done, except immediate-preparation orders."""
    staff_id = _require_batch_staff(staff_id, patient_id)
    record_ids = [
        r.id for r in _day_occurrences(db, patient_id, scheduled_date)
        if r.verification_status == StepStatus.PENDING.value
        and r.preparation_status == StepStatus.COMPLETED.value
        and r.prescription.preparation_method != PreparationMethod.IMMEDIATE.value
    ]

    def apply(record_id):
        verify_medication(db, record_id, staff_id)
        return DONE

    return _run_each(OneClickOutcome(patient_id, scheduled_date, "verify"), record_ids, apply)


def batch_dispense(db: Session, patient_id: int, scheduled_date: date, staff_id: str) -> OneClickOutcome:
    """
    一鍵派藥: dispense every verified, pending occurrence of the day.

    Injections are never included. Orders with inspection rules need a
    reading taken by hand, so they are left out, unless the resident is in
    hospital: then every included occurrence fails with 入院 instead of
    being dispensed.
    """
    staff_id = _require_batch_staff(staff_id, patient_id)
    hospitalized = _is_hospitalized(db, patient_id, scheduled_date)
    record_ids = [
        r.id for r in _day_occurrences(db, patient_id, scheduled_date)
        if r.dispensing_status == StepStatus.PENDING.value
        and r.verification_status == StepStatus.COMPLETED.value
        and r.prescription.administration_route != AdministrationRoute.INJECTION.value
        and (hospitalized or not r.prescription.inspection_rules)
    ]
    return _run_each(
        OneClickOutcome(patient_id, scheduled_date, "dispense"),
        record_ids,
        lambda record_id: _dispense_one(db, record_id, staff_id, hospitalized),
    )


def batch_dispense_immediate(db: Session, patient_id: int, scheduled_date: date, staff_id: str) -> OneClickOutcome:
    """
    Whole workflow in one go for immediate-preparation oral orders with no
    inspection rules: prepare, verify and dispense (or fail with 入院).
    Steps already completed are not repeated.
    """
    staff_id = _require_batch_staff(staff_id, patient_id)
    hospitalized = _is_hospitalized(db, patient_id, scheduled_date)
    candidates = [
        (r.id, r.preparation_status, r.verification_status)
        for r in _day_occurrences(db, patient_id, scheduled_date)
        if r.dispensing_status == StepStatus.PENDING.value
        and r.prescription.preparation_method == PreparationMethod.IMMEDIATE.value
        and r.prescription.administration_route == AdministrationRoute.ORAL.value
        and not r.prescription.inspection_rules
    ]
    pending_steps = {record_id: (prep, verif) for record_id, prep, verif in candidates}

    def apply(record_id):
        preparation, verification = pending_steps[record_id]
        if preparation == StepStatus.PENDING.value:
            prepare_medication(db, record_id, staff_id)
        if verification == StepStatus.PENDING.value:
            verify_medication(db, record_id, staff_id)
        return _dispense_one(db, record_id, staff_id, hospitalized)

    return _run_each(
        OneClickOutcome(patient_id, scheduled_date, "dispense_immediate"),
        [record_id for record_id, _, _ in candidates],
        apply,
    )
