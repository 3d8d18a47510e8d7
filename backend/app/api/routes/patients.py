"""Residents, their away episodes (入院 / 回家) and health records."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.config import settings
from app.core.exceptions import BusinessError
from app.models.enums import EpisodeType, HealthRecordType, ResidencyStatus
from app.models.health_record import HealthRecord
from app.models.patient import HospitalEpisode, Patient
from app.schemas.patient import (
    EpisodeCreate,
    EpisodeResponse,
    HealthRecordCreate,
    HealthRecordResponse,
    PatientCreate,
    PatientResponse,
    PatientUpdate,
)
from app.workflow.generator import reopen_generation_markers

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient:
        raise BusinessError.not_found("Patient", f"id={patient_id}")
    return patient


def _check_residency(value: Optional[str]):
    if value is not None and value not in {s.value for s in ResidencyStatus}:
        raise BusinessError.bad_request(f"Unknown residency status: {value}")


@router.post("", response_model=PatientResponse)
def create_patient(payload: PatientCreate, db: Session = Depends(get_db)):
    _check_residency(payload.residency_status)
    patient = Patient(**payload.model_dump())
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info(f"[Patients] Created patient {patient.id} ({patient.name})")
    return patient


@router.get("", response_model=list[PatientResponse])
def list_patients(
    residency_status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    q = db.query(Patient)
    if residency_status:
        q = q.filter(Patient.residency_status == residency_status)
    return q.order_by(Patient.id).all()


@router.get("/{patient_id}", response_model=PatientResponse)
def get_patient(patient_id: int, db: Session = Depends(get_db)):
    return _get_patient(db, patient_id)


@router.patch("/{patient_id}", response_model=PatientResponse)
def update_patient(patient_id: int, payload: PatientUpdate, db: Session = Depends(get_db)):
    patient = _get_patient(db, patient_id)
    changes = payload.model_dump(exclude_unset=True)
    _check_residency(changes.get("residency_status"))
    for key, value in changes.items():
        setattr(patient, key, value)
    if "residency_status" in changes or "is_hospitalized" in changes:
        reopen_generation_markers(db, settings.facility_today())
    db.commit()
    db.refresh(patient)
    logger.info(f"[Patients] Updated patient {patient_id}: {', '.join(changes) or 'no changes'}")
    return patient


# ==============================================================================
# AWAY EPISODES
# ==============================================================================

@router.post("/{patient_id}/episodes", response_model=EpisodeResponse)
def create_episode(patient_id: int, payload: EpisodeCreate, db: Session = Depends(get_db)):
    """Record a hospital admission or home leave. Open-ended while end_date is empty."""
    _get_patient(db, patient_id)
    if payload.episode_type not in {e.value for e in EpisodeType}:
        raise BusinessError.bad_request(f"Unknown episode type: {payload.episode_type}")
    if payload.end_date and payload.end_date < payload.start_date:
        raise BusinessError.bad_request("end_date must not be before start_date")

    episode = HospitalEpisode(patient_id=patient_id, **payload.model_dump())
    db.add(episode)
    db.commit()
    db.refresh(episode)
    logger.info(f"[Patients] Episode {episode.id} ({episode.episode_type}) for patient {patient_id} from {episode.start_date}")
    return episode


@router.get("/{patient_id}/episodes", response_model=list[EpisodeResponse])
def list_episodes(patient_id: int, db: Session = Depends(get_db)):
    _get_patient(db, patient_id)
    return (
        db.query(HospitalEpisode)
        .filter(HospitalEpisode.patient_id == patient_id)
        .order_by(HospitalEpisode.start_date.desc())
        .all()
    )


@router.post("/{patient_id}/episodes/{episode_id}/close", response_model=EpisodeResponse)
def close_episode(patient_id: int, episode_id: int, end_date: date = Query(...), db: Session = Depends(get_db)):
    """Patient is back: set the episode's end date."""
    episode = (
        db.query(HospitalEpisode)
        .filter(HospitalEpisode.id == episode_id, HospitalEpisode.patient_id == patient_id)
        .first()
    )
    if not episode:
        raise BusinessError.not_found("Episode", f"id={episode_id} patient={patient_id}")
    if end_date < episode.start_date:
        raise BusinessError.bad_request("end_date must not be before start_date")
    episode.end_date = end_date
    reopen_generation_markers(db, end_date)
    db.commit()
    db.refresh(episode)
    logger.info(f"[Patients] Episode {episode_id} for patient {patient_id} closed on {end_date}")
    return episode


# ==============================================================================
# HEALTH RECORDS
# ==============================================================================

@router.post("/{patient_id}/health-records", response_model=HealthRecordResponse)
def create_health_record(patient_id: int, payload: HealthRecordCreate, db: Session = Depends(get_db)):
    _get_patient(db, patient_id)
    if payload.record_type not in {t.value for t in HealthRecordType}:
        raise BusinessError.bad_request(f"Unknown record type: {payload.record_type}")
    record = HealthRecord(patient_id=patient_id, **payload.model_dump())
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@router.get("/{patient_id}/health-records", response_model=list[HealthRecordResponse])
def list_health_records(
    patient_id: int,
    record_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Newest first."""
    _get_patient(db, patient_id)
    q = db.query(HealthRecord).filter(HealthRecord.patient_id == patient_id)
    if record_type:
        q = q.filter(HealthRecord.record_type == record_type)
    return (
        q.order_by(HealthRecord.record_date.desc(), HealthRecord.record_time.desc(), HealthRecord.id.desc())
        .limit(limit)
        .all()
    )
