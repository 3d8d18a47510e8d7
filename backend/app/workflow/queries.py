"""
Read side of the workflow: filtered occurrence lists and overdue summaries.

No business logic beyond filtering and chronological ordering (scheduled
date, then scheduled time). An occurrence is overdue when its dispensing
step is still pending and its scheduled date/time, read as facility local
time, has passed.
"""
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import StoreError
from app.models.enums import PreparationMethod, ResidencyStatus, StepStatus
from app.models.patient import Patient
from app.models.prescription import Prescription
from app.models.workflow_record import MedicationWorkflowRecord
from app.schemas.workflow import OverduePatientSummary
from app.services.store import WorkflowStore
from app.workflow.schedule import normalize_slot

logger = logging.getLogger(__name__)


def _valid_id(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def fetch_prescription_workflow_records(
    db: Session,
    patient_id: Optional[int] = None,
    scheduled_date: Optional[date] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    prescription_ids: Optional[Iterable[int]] = None,
) -> List[MedicationWorkflowRecord]:
    """Occurrences matching the filters; invalid ids are ignored rather than matching nothing."""
    patient_id = _valid_id(patient_id)
    if prescription_ids is not None:
        prescription_ids = [pid for pid in (_valid_id(p) for p in prescription_ids) if pid is not None] or None

    try:
        records = WorkflowStore(db).get_workflow_occurrences(
            patient_id=patient_id,
            scheduled_date=scheduled_date,
            date_from=date_from,
            date_to=date_to,
            prescription_ids=prescription_ids,
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load workflow records: {e}", patient_id=patient_id) from e

    logger.debug(f"[Workflow] Fetched {len(records)} records (patient={patient_id}, date={scheduled_date})")
    return records


def get_record_for_slot(
    records: Iterable[MedicationWorkflowRecord],
    prescription_id: int,
    scheduled_date: date,
    scheduled_time: str,
) -> Optional[MedicationWorkflowRecord]:
    slot = normalize_slot(scheduled_time)
    for record in records:
        if (
            record.prescription_id == prescription_id
            and record.scheduled_date == scheduled_date
            and normalize_slot(record.scheduled_time) == slot
        ):
            return record
    return None


def _scheduled_at(record: MedicationWorkflowRecord) -> datetime:
    hour, minute = (int(p) for p in normalize_slot(record.scheduled_time).split(":"))
    return datetime(record.scheduled_date.year, record.scheduled_date.month, record.scheduled_date.day, hour, minute)


def is_workflow_overdue(record: MedicationWorkflowRecord, now: Optional[datetime] = None) -> bool:
    if record.dispensing_status != StepStatus.PENDING.value:
        return False
    now = now or settings.facility_now().replace(tzinfo=None)
    return _scheduled_at(record) < now


def calculate_overdue_count_by_date(
    records: Iterable[MedicationWorkflowRecord],
    dates: Iterable[date],
    now: Optional[datetime] = None,
) -> Dict[date, int]:
    counts = {d: 0 for d in dates}
    for record in records:
        if record.scheduled_date in counts and is_workflow_overdue(record, now):
            counts[record.scheduled_date] += 1
    return counts


def count_overdue_by_preparation_method(
    db: Session,
    records: Iterable[MedicationWorkflowRecord],
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Overdue counts split by how the prescription is prepared (advanced / immediate)."""
    overdue = [r for r in records if is_workflow_overdue(r, now)]
    counts = {"all": len(overdue), PreparationMethod.ADVANCED.value: 0, PreparationMethod.IMMEDIATE.value: 0}
    if not overdue:
        return counts

    methods = dict(
        db.query(Prescription.id, Prescription.preparation_method)
        .filter(Prescription.id.in_({r.prescription_id for r in overdue}))
        .all()
    )
    for record in overdue:
        method = methods.get(record.prescription_id)
        if method in counts and method != "all":
            counts[method] += 1
    return counts


def get_patients_with_overdue_workflow(
    db: Session,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    now: Optional[datetime] = None,
) -> List[OverduePatientSummary]:
    """Resident patients with overdue doses, most overdue first."""
    now = now or settings.facility_now().replace(tzinfo=None)
    try:
        records = WorkflowStore(db).get_workflow_occurrences(
            date_from=date_from,
            date_to=date_to or now.date(),
            dispensing_status=StepStatus.PENDING.value,
        )
        by_patient = defaultdict(list)
        for record in records:
            if is_workflow_overdue(record, now):
                by_patient[record.patient_id].append(record.id)
        if not by_patient:
            return []
        patients = (
            db.query(Patient)
            .filter(Patient.id.in_(list(by_patient)))
            .filter(Patient.residency_status == ResidencyStatus.RESIDENT.value)
            .all()
        )
    except SQLAlchemyError as e:
        raise StoreError(f"Failed to load overdue workflow: {e}") from e

    summaries = [
        OverduePatientSummary(
            patient_id=p.id,
            patient_name=p.name,
            overdue_count=len(by_patient[p.id]),
            overdue_record_ids=by_patient[p.id],
        )
        for p in patients
    ]
    summaries.sort(key=lambda s: (-s.overdue_count, s.patient_id))
    return summaries
