"""
Daily occurrence generator.

For a target date, make sure every active, in-scope prescription has exactly
one workflow record per scheduled time slot. Re-running for the same date is
safe: existing (prescription, date, slot) triples are skipped, and the
unique constraint backs that up if two runs race.

A completion marker in daily_system_tasks records that a date was fully
generated. A run with per-prescription errors leaves the marker pending so
the next run retries; generation failure never blocks the rest of the app.
"""
import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditLog
from app.core.config import settings
from app.core.exceptions import StoreError, WorkflowValidationError
from app.models.enums import StepStatus, TaskStatus
from app.models.workflow_record import MedicationWorkflowRecord
from app.schemas.generation import (
    BatchGenerationResult,
    ExcludedPatient,
    GenerationError,
    GenerationResult,
)
from app.services.store import WorkflowStore
from app.workflow.eligibility import check_eligible_patients
from app.workflow.schedule import in_validity_window, matches_schedule, slots_for_date

logger = logging.getLogger(__name__)

GENERATION_TASK_NAME = "Daily Medication Workflow Generation"


def _new_occurrence(prescription, target_date: date, slot: str) -> MedicationWorkflowRecord:
    return MedicationWorkflowRecord(
        prescription_id=prescription.id,
        patient_id=prescription.patient_id,
        scheduled_date=target_date,
        scheduled_time=slot,
        meal_timing=prescription.meal_timing,
        preparation_status=StepStatus.PENDING.value,
        verification_status=StepStatus.PENDING.value,
        dispensing_status=StepStatus.PENDING.value,
    )


def generate_daily_workflow_records(
    db: Session,
    target_date: Optional[date] = None,
    patient_id: Optional[int] = None,
    force: bool = False,
) -> GenerationResult:
    """
    Materialise the occurrences for one date.

    Args:
        db: Database session (committed on success, rolled back on store error)
        target_date: Defaults to today in the facility's time zone
        patient_id: Restrict to one resident (does not touch the completion marker)
        force: Ignore an existing completion marker and re-check everything

    Raises:
        StoreError: the store was unreachable; nothing from this run is kept
    """
    target_date = target_date or settings.facility_today()
    store = WorkflowStore(db)
    result = GenerationResult(target_date=target_date)
    full_run = patient_id is None

    try:
        if full_run and not force:
            marker = store.get_task_marker(GENERATION_TASK_NAME, target_date)
            if marker is not None and marker.status == TaskStatus.COMPLETED.value:
                result.skipped = True
                result.message = f"Occurrences for {target_date} already generated"
                logger.info(f"[Generator] {result.message}; skipping")
                AuditLog.log_generation(target_date.isoformat(), 0, 0, 0, 0, skipped=True)
                return result

        partition = check_eligible_patients(db, target_date)
        excluded = partition.excluded_reasons()
        result.excluded_patients = [
            ExcludedPatient(patient_id=pid, reason=reason)
            for pid, reason in excluded.items()
            if patient_id is None or pid == patient_id
        ]

        prescriptions = store.get_active_prescriptions(target_date, patient_id)
        existing = store.existing_slots(target_date, [rx.id for rx in prescriptions])
        logger.info(f"[Generator] {target_date}: {len(prescriptions)} active prescriptions, {len(existing)} slots already exist")

        for rx in prescriptions:
            result.prescriptions_processed += 1

            if rx.is_prn:
                continue
            if not in_validity_window(rx, target_date) or not matches_schedule(rx, target_date):
                continue
            if rx.patient_id in excluded:
                logger.debug(f"[Generator] Skipping rx {rx.id}: patient {rx.patient_id} {excluded[rx.patient_id]}")
                continue

            try:
                for slot in slots_for_date(rx, target_date):
                    if (rx.id, slot) in existing:
                        result.already_existing += 1
                        continue
                    if store.create_occurrence(_new_occurrence(rx, target_date, slot)) is None:
                        result.already_existing += 1
                    else:
                        result.records_generated += 1
                        existing.add((rx.id, slot))
            except (SQLAlchemyError, ValueError) as e:
                logger.error(f"[Generator] Prescription {rx.id} ({rx.medication_name}) failed: {e}")
                result.errors.append(GenerationError(prescription_id=rx.id, error=str(e)))

        if full_run:
            store.mark_task(
                GENERATION_TASK_NAME,
                target_date,
                TaskStatus.PENDING if result.errors else TaskStatus.COMPLETED,
                details={
                    "records_generated": result.records_generated,
                    "already_existing": result.already_existing,
                    "errors": len(result.errors),
                },
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Generator] Store error while generating {target_date}: {e}")
        raise StoreError(f"Generation for {target_date} failed: {e}") from e

    result.success = not result.errors
    result.message = (
        f"Generated {result.records_generated} workflow records for {target_date}"
        f" ({result.already_existing} already existed, {len(result.errors)} prescriptions failed)"
    )
    logger.info(f"[Generator] {result.message}")
    AuditLog.log_generation(
        target_date.isoformat(),
        result.records_generated,
        result.already_existing,
        len(result.excluded_patients),
        len(result.errors),
    )
    return result


def reopen_generation_markers(db: Session, from_date: date) -> int:
    """
    Put completed generation markers from from_date onward back to pending.

    Called when a prescription or a resident's eligibility changes, so the
    next full run picks up the new occurrences instead of skipping the date.
    Flushes only; the caller commits with its own change.
    """
    reopened = WorkflowStore(db).reopen_tasks(GENERATION_TASK_NAME, from_date)
    if reopened:
        logger.info(f"[Generator] Reopened {reopened} generation markers from {from_date}")
    return reopened


def generate_batch_workflow_records(
    db: Session,
    start_date: date,
    end_date: date,
    patient_id: Optional[int] = None,
) -> BatchGenerationResult:
    """Generate day by day over [start_date, end_date]; a failed day does not stop the rest."""
    if end_date < start_date:
        raise WorkflowValidationError("end_date must not be before start_date", patient_id=patient_id)
    span = (end_date - start_date).days + 1
    if span > settings.BATCH_GENERATION_MAX_DAYS:
        raise WorkflowValidationError(
            f"Date range of {span} days exceeds the limit of {settings.BATCH_GENERATION_MAX_DAYS}",
            patient_id=patient_id,
        )

    days = []
    for offset in range(span):
        day = start_date + timedelta(days=offset)
        try:
            days.append(generate_daily_workflow_records(db, day, patient_id=patient_id))
        except StoreError as e:
            logger.warning(f"[Generator] Generation for {day} failed: {e.message}")
            days.append(GenerationResult(target_date=day, success=False, message=e.message))

    return BatchGenerationResult(
        start_date=start_date,
        end_date=end_date,
        total_records=sum(d.records_generated for d in days),
        days=days,
    )


def get_overdue_daily_system_tasks(db: Session, today: Optional[date] = None):
    """Generation markers left pending on earlier days (a run that never finished)."""
    today = today or settings.facility_today()
    try:
        return WorkflowStore(db).get_overdue_tasks(today)
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to read daily system tasks: {e}") from e
