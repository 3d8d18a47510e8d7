"""
WorkflowStore: the narrow data-access contract the workflow engine runs on.

The engine never holds "all records" in memory; it asks the store for
exactly the rows it needs and writes through conditional updates:

    UPDATE medication_workflow_records
       SET <step>_status = :new, <step>_staff = :staff, <step>_time = :now, ...
     WHERE id = :id
       AND <step>_status = :expected
       AND <predecessor>_status = 'completed'

Zero rows affected means another session changed the row first (or the step
order is wrong); that is reported as PreconditionFailed, never ignored.
"""
import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import OccurrenceNotFound, PreconditionFailed, StoreError
from app.models.daily_task import DailySystemTask
from app.models.enums import (
    HealthRecordType,
    PrescriptionStatus,
    StepStatus,
    TaskStatus,
    VitalSignType,
    WorkflowStep,
)
from app.models.health_record import HealthRecord
from app.models.patient import HospitalEpisode, Patient
from app.models.prescription import InspectionRule, Prescription
from app.models.workflow_record import MedicationWorkflowRecord

logger = logging.getLogger(__name__)

# Which health-record family and column hold each vital sign
VITAL_SIGN_FIELDS = {
    VitalSignType.SYSTOLIC: (HealthRecordType.VITAL_SIGNS, "systolic"),
    VitalSignType.DIASTOLIC: (HealthRecordType.VITAL_SIGNS, "diastolic"),
    VitalSignType.PULSE: (HealthRecordType.VITAL_SIGNS, "pulse"),
    VitalSignType.RESPIRATION: (HealthRecordType.VITAL_SIGNS, "respiratory_rate"),
    VitalSignType.SPO2: (HealthRecordType.VITAL_SIGNS, "spo2"),
    VitalSignType.TEMPERATURE: (HealthRecordType.VITAL_SIGNS, "temperature"),
    VitalSignType.BLOOD_GLUCOSE: (HealthRecordType.BLOOD_GLUCOSE, "blood_glucose"),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStore:
    """SQLAlchemy implementation of the workflow data-access contract.

    Methods flush but never commit; the calling operation owns the
    transaction so a single logical change is committed (or rolled back)
    as a whole.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Prescriptions & rules (read-mostly)
    # ------------------------------------------------------------------

    def get_active_prescriptions(self, target_date: date, patient_id: Optional[int] = None) -> list[Prescription]:
        """Active prescriptions whose validity window includes target_date."""
        q = (
            self.db.query(Prescription)
            .filter(Prescription.status == PrescriptionStatus.ACTIVE.value)
            .filter(Prescription.start_date <= target_date)
            .filter(or_(Prescription.end_date.is_(None), Prescription.end_date >= target_date))
        )
        if patient_id is not None:
            q = q.filter(Prescription.patient_id == patient_id)
        return q.order_by(Prescription.patient_id, Prescription.id).all()

    def get_prescription(self, prescription_id: int) -> Optional[Prescription]:
        return self.db.query(Prescription).filter(Prescription.id == prescription_id).first()

    def get_inspection_rules(self, prescription_id: int) -> list[InspectionRule]:
        return (
            self.db.query(InspectionRule)
            .filter(InspectionRule.prescription_id == prescription_id)
            .order_by(InspectionRule.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Patients & vital signs
    # ------------------------------------------------------------------

    def list_patients(self) -> list[Patient]:
        return self.db.query(Patient).order_by(Patient.id).all()

    def get_away_episodes(self, target_date: date) -> list[HospitalEpisode]:
        """Episodes (入院 / 回家) that cover target_date."""
        return (
            self.db.query(HospitalEpisode)
            .filter(HospitalEpisode.start_date <= target_date)
            .filter(or_(HospitalEpisode.end_date.is_(None), HospitalEpisode.end_date >= target_date))
            .order_by(HospitalEpisode.start_date)
            .all()
        )

    def get_latest_vital_sign(self, patient_id: int, vital_sign_type) -> Optional[float]:
        """Most recent stored value of one vital sign, or None if never measured."""
        try:
            sign = VitalSignType(vital_sign_type)
        except ValueError:
            logger.warning(f"[Store] Unknown vital sign type: {vital_sign_type}")
            return None

        record_type, field_name = VITAL_SIGN_FIELDS[sign]
        column = getattr(HealthRecord, field_name)
        row = (
            self.db.query(HealthRecord)
            .filter(HealthRecord.patient_id == patient_id)
            .filter(HealthRecord.record_type == record_type.value)
            .filter(column.isnot(None))
            .order_by(HealthRecord.record_date.desc(), HealthRecord.record_time.desc(), HealthRecord.id.desc())
            .first()
        )
        if row is None:
            return None
        logger.debug(
            f"[Store] Latest {sign.value} for patient {patient_id}: {getattr(row, field_name)} "
            f"({row.record_date} {row.record_time}, record {row.id})"
        )
        return float(getattr(row, field_name))

    def add_health_record(self, patient_id: int, record_date: date, record_time: str, values: dict,
                          notes: str | None = None, recorded_by: str | None = None) -> list[HealthRecord]:
        """Persist a reading given as {vital_sign_type: value}.

        Readings of different families (vital signs vs glucose) go to
        separate rows, mirroring how the home records them.
        """
        by_type: dict[str, dict] = {}
        for raw_type, value in values.items():
            if value is None:
                continue
            record_type, field_name = VITAL_SIGN_FIELDS[VitalSignType(raw_type)]
            by_type.setdefault(record_type.value, {})[field_name] = float(value)

        rows = []
        for record_type, fields in by_type.items():
            row = HealthRecord(
                patient_id=patient_id,
                record_date=record_date,
                record_time=record_time,
                record_type=record_type,
                notes=notes,
                recorded_by=recorded_by,
                **fields,
            )
            self.db.add(row)
            rows.append(row)
        self.db.flush()
        return rows

    # ------------------------------------------------------------------
    # Occurrences
    # ------------------------------------------------------------------

    def get_occurrence(self, record_id: int) -> Optional[MedicationWorkflowRecord]:
        return (
            self.db.query(MedicationWorkflowRecord)
            .filter(MedicationWorkflowRecord.id == record_id)
            .populate_existing()
            .first()
        )

    def get_workflow_occurrences(
        self,
        patient_id: Optional[int] = None,
        scheduled_date: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        prescription_ids: Optional[Iterable[int]] = None,
        scheduled_time: Optional[str] = None,
        dispensing_status: Optional[str] = None,
    ) -> list[MedicationWorkflowRecord]:
        """Server-side filtered occurrences, ordered by scheduled date then time."""
        q = self.db.query(MedicationWorkflowRecord)
        if patient_id is not None:
            q = q.filter(MedicationWorkflowRecord.patient_id == patient_id)
        if scheduled_date is not None:
            q = q.filter(MedicationWorkflowRecord.scheduled_date == scheduled_date)
        if date_from is not None:
            q = q.filter(MedicationWorkflowRecord.scheduled_date >= date_from)
        if date_to is not None:
            q = q.filter(MedicationWorkflowRecord.scheduled_date <= date_to)
        if prescription_ids is not None:
            q = q.filter(MedicationWorkflowRecord.prescription_id.in_(list(prescription_ids)))
        if scheduled_time is not None:
            q = q.filter(MedicationWorkflowRecord.scheduled_time == scheduled_time)
        if dispensing_status is not None:
            q = q.filter(MedicationWorkflowRecord.dispensing_status == dispensing_status)
        return q.order_by(
            MedicationWorkflowRecord.scheduled_date,
            MedicationWorkflowRecord.scheduled_time,
            MedicationWorkflowRecord.id,
        ).all()

    def existing_slots(self, target_date: date, prescription_ids: Iterable[int]) -> set[tuple[int, str]]:
        """(prescription_id, scheduled_time) pairs already materialised for a date."""
        ids = list(prescription_ids)
        if not ids:
            return set()
        rows = (
            self.db.query(MedicationWorkflowRecord.prescription_id, MedicationWorkflowRecord.scheduled_time)
            .filter(MedicationWorkflowRecord.scheduled_date == target_date)
            .filter(MedicationWorkflowRecord.prescription_id.in_(ids))
            .all()
        )
        return {(pid, slot) for pid, slot in rows}

    def create_occurrence(self, occurrence: MedicationWorkflowRecord) -> Optional[MedicationWorkflowRecord]:
        """Insert one occurrence; a duplicate (prescription, date, slot) returns None."""
        try:
            with self.db.begin_nested():
                self.db.add(occurrence)
                self.db.flush()
        except IntegrityError:
            logger.info(
                f"[Store] Occurrence already exists: rx={occurrence.prescription_id} "
                f"{occurrence.scheduled_date} {occurrence.scheduled_time}"
            )
            return None
        return occurrence

    def update_occurrence_step(
        self,
        record_id: int,
        step: WorkflowStep,
        expected_status: StepStatus,
        new_status: StepStatus,
        staff_id: Optional[str] = None,
        reason: Optional[str] = None,
        custom_reason: Optional[str] = None,
        snapshot: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> MedicationWorkflowRecord:
        """Compare-and-set one step. Raises PreconditionFailed on zero rows."""
        step = WorkflowStep(step)
        model = MedicationWorkflowRecord
        values = {
            f"{step.value}_status": StepStatus(new_status).value,
            f"{step.value}_staff": staff_id,
            f"{step.value}_time": utcnow(),
        }
        if new_status == StepStatus.FAILED:
            values["dispensing_failure_reason"] = reason
            values["custom_failure_reason"] = custom_reason
        else:
            values["dispensing_failure_reason"] = None
            values["custom_failure_reason"] = None
        if snapshot is not None:
            values["inspection_check_result"] = snapshot
        if notes:
            values["notes"] = notes

        q = self.db.query(model).filter(model.id == record_id)
        q = q.filter(getattr(model, f"{step.value}_status") == StepStatus(expected_status).value)
        if step.predecessor is not None:
            q = q.filter(getattr(model, f"{step.predecessor.value}_status") == StepStatus.COMPLETED.value)

        try:
            affected = q.update(values, synchronize_session=False)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update {step.value}: {e}", record_id=record_id, step=step.value) from e

        if affected == 0:
            raise self._explain_miss(record_id, step, expected_status)

        return self.get_occurrence(record_id)

    def reset_steps(self, record_id: int, step: WorkflowStep) -> MedicationWorkflowRecord:
        """Reset step and every later step to pending; step must not be pending already."""
        step = WorkflowStep(step)
        model = MedicationWorkflowRecord
        values = {}
        for s in step.with_later_steps():
            values[f"{s.value}_status"] = StepStatus.PENDING.value
            values[f"{s.value}_staff"] = None
            values[f"{s.value}_time"] = None
        # the failure reason belongs to whichever step failed; any reset clears it
        values["dispensing_failure_reason"] = None
        values["custom_failure_reason"] = None
        values["inspection_check_result"] = None

        q = (
            self.db.query(model)
            .filter(model.id == record_id)
            .filter(getattr(model, f"{step.value}_status") != StepStatus.PENDING.value)
        )
        try:
            affected = q.update(values, synchronize_session=False)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to revert {step.value}: {e}", record_id=record_id, step=step.value) from e

        if affected == 0:
            record = self.get_occurrence(record_id)
            if record is None:
                raise OccurrenceNotFound(f"Workflow record {record_id} not found", record_id=record_id, step=step.value)
            raise PreconditionFailed(
                f"Nothing to revert: {step.value} is still pending",
                record_id=record_id,
                step=step.value,
                patient_id=record.patient_id,
            )
        return self.get_occurrence(record_id)

    def _explain_miss(self, record_id: int, step: WorkflowStep, expected_status: StepStatus) -> Exception:
        record = self.get_occurrence(record_id)
        if record is None:
            return OccurrenceNotFound(f"Workflow record {record_id} not found", record_id=record_id, step=step.value)

        if step.predecessor is not None and record.step_status(step.predecessor) != StepStatus.COMPLETED.value:
            message = (
                f"{step.predecessor.value} must be completed before {step.value} "
                f"(currently {record.step_status(step.predecessor)})"
            )
        else:
            message = (
                f"{step.value} is {record.step_status(step)}, expected {StepStatus(expected_status).value}; "
                f"it may have been updated by another staff member"
            )
        logger.info(f"[Store] Precondition failed for record {record_id}: {message}")
        return PreconditionFailed(message, record_id=record_id, step=step.value, patient_id=record.patient_id)

    # ------------------------------------------------------------------
    # Daily task markers
    # ------------------------------------------------------------------

    def get_task_marker(self, task_name: str, task_date: date) -> Optional[DailySystemTask]:
        return (
            self.db.query(DailySystemTask)
            .filter(DailySystemTask.task_name == task_name, DailySystemTask.task_date == task_date)
            .first()
        )

    def mark_task(self, task_name: str, task_date: date, status: TaskStatus, details: dict | None = None) -> DailySystemTask:
        task = self.get_task_marker(task_name, task_date)
        if task is None:
            task = DailySystemTask(task_name=task_name, task_date=task_date)
            self.db.add(task)
        task.status = TaskStatus(status).value
        task.completed_at = utcnow() if status == TaskStatus.COMPLETED else None
        task.details = details
        self.db.flush()
        return task

    def get_overdue_tasks(self, today: date) -> list[DailySystemTask]:
        return (
            self.db.query(DailySystemTask)
            .filter(DailySystemTask.task_date < today)
            .filter(DailySystemTask.status == TaskStatus.PENDING.value)
            .order_by(DailySystemTask.task_date)
            .all()
        )

    def reopen_tasks(self, task_name: str, from_date: date) -> int:
        """Completed markers on or after from_date go back to pending."""
        return (
            self.db.query(DailySystemTask)
            .filter(DailySystemTask.task_name == task_name)
            .filter(DailySystemTask.task_date >= from_date)
            .filter(DailySystemTask.status == TaskStatus.COMPLETED.value)
            .update(
                {DailySystemTask.status: TaskStatus.PENDING.value, DailySystemTask.completed_at: None},
                synchronize_session=False,
            )
        )
