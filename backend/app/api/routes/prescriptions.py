"""
Prescriptions and their inspection rules.

Edits and discontinuation only affect future generation runs; occurrences
already generated keep the order as it was when they were created.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.config import settings
from app.core.exceptions import BusinessError
from app.models.enums import PreparationMethod, PrescriptionStatus
from app.models.patient import Patient
from app.models.prescription import InspectionRule, Prescription
from app.schemas.prescription import (
    InspectionRuleCreate,
    InspectionRuleResponse,
    PrescriptionCreate,
    PrescriptionResponse,
    PrescriptionUpdate,
)
from app.workflow.generator import reopen_generation_markers

logger = logging.getLogger(__name__)
router = APIRouter()


def _plain(values: dict) -> dict:
    """Enum members -> their stored string values."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


def _get_prescription(db: Session, prescription_id: int) -> Prescription:
    rx = db.query(Prescription).filter(Prescription.id == prescription_id).first()
    if not rx:
        raise BusinessError.not_found("Prescription", f"id={prescription_id}")
    return rx


def _check_choices(values: dict):
    if "preparation_method" in values and values["preparation_method"] is not None:
        if values["preparation_method"] not in {m.value for m in PreparationMethod}:
            raise BusinessError.bad_request(f"Unknown preparation method: {values['preparation_method']}")
    if "status" in values and values["status"] is not None:
        if values["status"] not in {s.value for s in PrescriptionStatus}:
            raise BusinessError.bad_request(f"Unknown prescription status: {values['status']}")


def _check_window(rx: Prescription):
    if rx.end_date and rx.end_date < rx.start_date:
        raise BusinessError.bad_request("end_date must not be before start_date")


@router.post("", response_model=PrescriptionResponse)
def create_prescription(payload: PrescriptionCreate, db: Session = Depends(get_db)):
    if not db.query(Patient).filter(Patient.id == payload.patient_id).first():
        raise BusinessError.not_found("Patient", f"id={payload.patient_id}")

    values = _plain(payload.model_dump(exclude={"inspection_rules"}, exclude_none=True))
    _check_choices(values)
    rx = Prescription(**values)
    _check_window(rx)
    rx.inspection_rules = [InspectionRule(**_plain(rule.model_dump())) for rule in payload.inspection_rules]

    db.add(rx)
    reopen_generation_markers(db, rx.start_date)
    db.commit()
    db.refresh(rx)
    logger.info(f"[Prescriptions] Created rx {rx.id} ({rx.medication_name}) for patient {rx.patient_id}")
    return rx


@router.get("", response_model=list[PrescriptionResponse])
def list_prescriptions(
    patient_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    q = db.query(Prescription)
    if patient_id is not None:
        q = q.filter(Prescription.patient_id == patient_id)
    if status:
        q = q.filter(Prescription.status == status)
    return q.order_by(Prescription.patient_id, Prescription.id).all()


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
def get_prescription(prescription_id: int, db: Session = Depends(get_db)):
    return _get_prescription(db, prescription_id)


@router.patch("/{prescription_id}", response_model=PrescriptionResponse)
def update_prescription(prescription_id: int, payload: PrescriptionUpdate, db: Session = Depends(get_db)):
    rx = _get_prescription(db, prescription_id)
    changes = _plain(payload.model_dump(exclude_unset=True))
    _check_choices(changes)
    previous_start = rx.start_date
    for key, value in changes.items():
        setattr(rx, key, value)
    _check_window(rx)
    if changes:
        reopen_generation_markers(db, min(previous_start, rx.start_date))
    db.commit()
    db.refresh(rx)
    logger.info(f"[Prescriptions] Updated rx {prescription_id}: {', '.join(changes) or 'no changes'}")
    return rx


@router.post("/{prescription_id}/discontinue", response_model=PrescriptionResponse)
def discontinue_prescription(prescription_id: int, db: Session = Depends(get_db)):
    """Stop generating new occurrences. Existing ones are left as they are."""
    rx = _get_prescription(db, prescription_id)
    today = settings.facility_today()
    rx.status = PrescriptionStatus.INACTIVE.value
    if rx.end_date is None or rx.end_date > today:
        rx.end_date = max(today, rx.start_date)
    db.commit()
    db.refresh(rx)
    logger.info(f"[Prescriptions] Discontinued rx {prescription_id} (end_date={rx.end_date})")
    return rx


# ==============================================================================
# INSPECTION RULES
# ==============================================================================

@router.get("/{prescription_id}/inspection-rules", response_model=list[InspectionRuleResponse])
def list_inspection_rules(prescription_id: int, db: Session = Depends(get_db)):
    return _get_prescription(db, prescription_id).inspection_rules


@router.post("/{prescription_id}/inspection-rules", response_model=InspectionRuleResponse)
def add_inspection_rule(prescription_id: int, payload: InspectionRuleCreate, db: Session = Depends(get_db)):
    _get_prescription(db, prescription_id)
    rule = InspectionRule(prescription_id=prescription_id, **_plain(payload.model_dump()))
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(
        f"[Prescriptions] Rule {rule.id} on rx {prescription_id}: "
        f"{rule.vital_sign_type} {rule.condition_operator} {rule.condition_value} -> {rule.action_if_met}"
    )
    return rule


@router.delete("/{prescription_id}/inspection-rules/{rule_id}")
def delete_inspection_rule(prescription_id: int, rule_id: int, db: Session = Depends(get_db)):
    rule = (
        db.query(InspectionRule)
        .filter(InspectionRule.id == rule_id, InspectionRule.prescription_id == prescription_id)
        .first()
    )
    if not rule:
        raise BusinessError.not_found("Inspection rule", f"id={rule_id} rx={prescription_id}")
    db.delete(rule)
    db.commit()
    return {"ok": True, "deleted": rule_id}
