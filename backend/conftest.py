"""
Shared fixtures: an in-memory SQLite database per test and small factories
for residents, prescriptions, occurrences and vital signs.
"""
import os
import sys
from datetime import date

sys.path.insert(0, os.path.join(os.path.dirname(__file__)))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("GENERATE_ON_STARTUP", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401 - register models
from app.db.base import Base
from app.db.session import enable_sqlite_savepoints
from app.models.health_record import HealthRecord
from app.models.patient import HospitalEpisode, Patient
from app.models.prescription import InspectionRule, Prescription
from app.models.workflow_record import MedicationWorkflowRecord


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class Factory:
    """Builds committed rows with sensible defaults."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def patient(self, name="陳大文", **kw) -> Patient:
        kw.setdefault("residency_status", "在住")
        kw.setdefault("is_hospitalized", False)
        return self._save(Patient(name=name, **kw))

    def prescription(self, patient, rules=(), **kw) -> Prescription:
        values = dict(
            medication_name="Amlodipine 5mg",
            frequency_type="daily",
            is_odd_even_day="none",
            medication_time_slots=["08:00"],
            is_prn=False,
            preparation_method="immediate",
            status="active",
            start_date=date(2024, 1, 1),
        )
        values.update(kw)
        rx = Prescription(patient_id=patient.id, **values)
        rx.inspection_rules = [InspectionRule(**rule) for rule in rules]
        return self._save(rx)

    def record(self, rx, scheduled_date=date(2024, 2, 1), scheduled_time="08:00",
               preparation="pending", verification="pending", dispensing="pending", **kw) -> MedicationWorkflowRecord:
        return self._save(MedicationWorkflowRecord(
            prescription_id=rx.id,
            patient_id=rx.patient_id,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            preparation_status=preparation,
            verification_status=verification,
            dispensing_status=dispensing,
            **kw,
        ))

    def verified_record(self, rx, **kw) -> MedicationWorkflowRecord:
        return self.record(rx, preparation="completed", verification="completed", **kw)

    def vitals(self, patient, record_date=date(2024, 1, 31), record_time="07:00",
               record_type="生命表徵", **values) -> HealthRecord:
        return self._save(HealthRecord(
            patient_id=patient.id,
            record_date=record_date,
            record_time=record_time,
            record_type=record_type,
            **values,
        ))

    def episode(self, patient, episode_type="入院", start_date=date(2024, 1, 1), end_date=None) -> HospitalEpisode:
        return self._save(HospitalEpisode(
            patient_id=patient.id,
            episode_type=episode_type,
            start_date=start_date,
            end_date=end_date,
        ))


@pytest.fixture
def make(db):
    return Factory(db)
