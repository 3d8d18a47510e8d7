#!/usr/bin/env python
"""Seed a few residents and prescriptions for local development, then generate today."""
from datetime import timedelta

from app.core.config import settings
from app.db.init_db import init_db
from app.db.session import SessionLocal
from app.models.patient import Patient
from app.models.prescription import InspectionRule, Prescription
from app.workflow.generator import generate_daily_workflow_records


def seed_demo_data():
    init_db()
    db = SessionLocal()
    today = settings.facility_today()

    try:
        if db.query(Patient).count() > 0:
            print("✓ Patients already exist, skipping seed")
            return

        chan = Patient(name="陳大文", bed_number="A01")
        wong = Patient(name="黃美玲", bed_number="A02")
        lee = Patient(name="李志強", bed_number="B05", is_hospitalized=True)
        db.add_all([chan, wong, lee])
        db.flush()

        amlodipine = Prescription(
            patient_id=chan.id,
            medication_name="Amlodipine 5mg",
            dosage_amount="1",
            dosage_form="tablet",
            administration_route="口服",
            frequency_type="daily",
            medication_time_slots=["08:00", "20:00"],
            meal_timing="餐後",
            preparation_method="advanced",
            start_date=today - timedelta(days=30),
        )
        amlodipine.inspection_rules = [
            InspectionRule(vital_sign_type="上壓", condition_operator="lt", condition_value=100),
            InspectionRule(vital_sign_type="脈搏", condition_operator="lt", condition_value=55,
                           action_if_met="flag_for_review"),
        ]
        metformin = Prescription(
            patient_id=wong.id,
            medication_name="Metformin 500mg",
            dosage_amount="1",
            dosage_form="tablet",
            frequency_type="daily",
            medication_time_slots=["08:00", "13:00", "18:00"],
            meal_timing="隨餐",
            start_date=today - timedelta(days=10),
        )
        metformin.inspection_rules = [
            InspectionRule(vital_sign_type="血糖值", condition_operator="lt", condition_value=4.0),
        ]
        vitamin_d = Prescription(
            patient_id=wong.id,
            medication_name="Vitamin D3 1000IU",
            frequency_type="every_x_days",
            frequency_value=2,
            medication_time_slots=["08:00"],
            start_date=today - timedelta(days=4),
        )
        paracetamol = Prescription(
            patient_id=lee.id,
            medication_name="Paracetamol 500mg",
            frequency_type="daily",
            medication_time_slots=["08:00"],
            is_prn=True,
            start_date=today - timedelta(days=5),
        )
        db.add_all([amlodipine, metformin, vitamin_d, paracetamol])
        db.commit()
        print("✅ Seeded 3 residents and 4 prescriptions")

        result = generate_daily_workflow_records(db, today)
        print(f"✅ {result.message}")
        for excluded in result.excluded_patients:
            print(f"   - patient {excluded.patient_id} excluded: {excluded.reason}")
    finally:
        db.close()


if __name__ == "__main__":
    seed_demo_data()
