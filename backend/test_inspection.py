"""Inspection rule evaluation against stored and fresh vital signs."""
from datetime import date

import pytest

from app.core.exceptions import OccurrenceNotFound, WorkflowValidationError
from app.models.health_record import HealthRecord
from app.services.store import WorkflowStore
from app.workflow.inspection import check_prescription_inspection_rules

SYSTOLIC_OVER_160 = {"vital_sign_type": "上壓", "condition_operator": "gt", "condition_value": 160}


def check(db, rx, fresh=None):
    return check_prescription_inspection_rules(WorkflowStore(db), rx.id, rx.patient_id, fresh)


def test_no_rules_always_dispensable(db, make):
    patient = make.patient()
    rx = make.prescription(patient)
    make.vitals(patient, systolic=200)

    result = check(db, rx)

    assert result.can_dispense
    assert result.blocked_rules == []
    assert result.used_vital_sign_data == {}


def test_high_systolic_blocks(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])
    make.vitals(patient, record_date=date(2024, 1, 30), systolic=150)
    make.vitals(patient, record_date=date(2024, 1, 31), systolic=170)

    result = check(db, rx)

    assert not result.can_dispense
    assert len(result.blocked_rules) == 1
    blocked = result.blocked_rules[0]
    assert blocked.actual_value == 170
    assert blocked.condition_value == 160
    assert blocked.condition_operator == "gt"
    assert blocked.source == "history"
    assert result.used_vital_sign_data == {"上壓": 170}
    assert "上壓" in result.message


def test_latest_reading_wins_by_date_then_time(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])
    make.vitals(patient, record_date=date(2024, 1, 31), record_time="07:00", systolic=170)
    make.vitals(patient, record_date=date(2024, 1, 31), record_time="15:30", systolic=140)

    assert check(db, rx).can_dispense


def test_missing_reading_skips_rule(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])
    make.vitals(patient, pulse=70)

    result = check(db, rx)

    assert result.can_dispense
    assert result.used_vital_sign_data == {}


def test_fresh_reading_preferred_over_history(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])
    make.vitals(patient, systolic=170)

    result = check(db, rx, fresh={"上壓": 130})

    assert result.can_dispense
    assert result.used_vital_sign_data == {"上壓": 130}

    result = check(db, rx, fresh={"上壓": 180})
    assert result.blocked_rules[0].source == "fresh"


def test_evaluation_writes_nothing(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])

    check(db, rx, fresh={"上壓": 180})

    assert db.query(HealthRecord).count() == 0


def test_glucose_reads_glucose_records(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[
        {"vital_sign_type": "血糖值", "condition_operator": "lt", "condition_value": 4.0},
    ])
    make.vitals(patient, record_type="血糖控制", blood_glucose=3.2)

    result = check(db, rx)

    assert not result.can_dispense
    assert result.blocked_rules[0].actual_value == pytest.approx(3.2)


@pytest.mark.parametrize("operator,threshold,met", [
    ("gt", 80, False),
    ("gte", 80, True),
    ("lt", 81, True),
    ("lte", 79, False),
    ("eq", 80, True),
    ("ne", 80, False),
    (">=", 80, True),
    ("<", 80, False),
])
def test_operators(db, make, operator, threshold, met):
    patient = make.patient()
    rx = make.prescription(patient, rules=[
        {"vital_sign_type": "脈搏", "condition_operator": operator, "condition_value": threshold},
    ])
    make.vitals(patient, pulse=80)

    assert check(db, rx).can_dispense is not met


def test_flag_for_review_does_not_block(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[
        {"vital_sign_type": "脈搏", "condition_operator": "lt", "condition_value": 55,
         "action_if_met": "flag_for_review"},
        SYSTOLIC_OVER_160,
    ])
    make.vitals(patient, pulse=50, systolic=120)

    result = check(db, rx)

    assert result.can_dispense
    assert result.blocked_rules == []
    assert [r.vital_sign_type for r in result.flagged_rules] == ["脈搏"]
    assert result.used_vital_sign_data == {"脈搏": 50, "上壓": 120}


def test_unknown_prescription(db, make):
    patient = make.patient()
    with pytest.raises(OccurrenceNotFound):
        check_prescription_inspection_rules(WorkflowStore(db), 999, patient.id)


def test_malformed_fresh_reading(db, make):
    patient = make.patient()
    rx = make.prescription(patient, rules=[SYSTOLIC_OVER_160])
    with pytest.raises(WorkflowValidationError):
        check(db, rx, fresh={"blood_pressure": 120})
