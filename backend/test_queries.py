"""Occurrence queries and overdue summaries."""
from datetime import date, datetime

from app.models.workflow_record import MedicationWorkflowRecord
from app.workflow.queries import (
    calculate_overdue_count_by_date,
    count_overdue_by_preparation_method,
    fetch_prescription_workflow_records,
    get_patients_with_overdue_workflow,
    get_record_for_slot,
    is_workflow_overdue,
)

NOW = datetime(2024, 2, 1, 12, 0)


def test_records_are_ordered_by_date_then_time(db, make):
    patient = make.patient()
    rx = make.prescription(patient)
    make.record(rx, scheduled_date=date(2024, 2, 2), scheduled_time="08:00")
    make.record(rx, scheduled_date=date(2024, 2, 1), scheduled_time="20:00")
    make.record(rx, scheduled_date=date(2024, 2, 1), scheduled_time="08:00")

    records = fetch_prescription_workflow_records(db, patient_id=patient.id)

    assert [(r.scheduled_date, r.scheduled_time) for r in records] == [
        (date(2024, 2, 1), "08:00"),
        (date(2024, 2, 1), "20:00"),
        (date(2024, 2, 2), "08:00"),
    ]


def test_filters(db, make):
    chan, wong = make.patient("陳大文"), make.patient("黃美玲")
    rx_chan = make.prescription(chan)
    rx_wong = make.prescription(wong)
    make.record(rx_chan, scheduled_date=date(2024, 2, 1))
    make.record(rx_chan, scheduled_date=date(2024, 2, 3))
    make.record(rx_wong, scheduled_date=date(2024, 2, 1))

    assert len(fetch_prescription_workflow_records(db, scheduled_date=date(2024, 2, 1))) == 2
    assert len(fetch_prescription_workflow_records(db, patient_id=chan.id, scheduled_date=date(2024, 2, 1))) == 1
    assert len(fetch_prescription_workflow_records(db, date_from=date(2024, 2, 2), date_to=date(2024, 2, 5))) == 1
    assert len(fetch_prescription_workflow_records(db, prescription_ids=[rx_wong.id])) == 1


def test_invalid_filters_are_ignored(db, make):
    patient = make.patient()
    rx = make.prescription(patient)
    make.record(rx)

    assert len(fetch_prescription_workflow_records(db, patient_id=0)) == 1
    assert len(fetch_prescription_workflow_records(db, prescription_ids=[-1, 0])) == 1


def test_get_record_for_slot():
    records = [
        MedicationWorkflowRecord(id=1, prescription_id=7, scheduled_date=date(2024, 2, 1), scheduled_time="08:00"),
        MedicationWorkflowRecord(id=2, prescription_id=7, scheduled_date=date(2024, 2, 1), scheduled_time="13:00"),
    ]
    assert get_record_for_slot(records, 7, date(2024, 2, 1), "13:00:00").id == 2
    assert get_record_for_slot(records, 7, date(2024, 2, 2), "08:00") is None


def test_overdue_only_when_dispensing_pending_and_time_passed():
    def occurrence(slot, dispensing="pending", day=date(2024, 2, 1)):
        return MedicationWorkflowRecord(scheduled_date=day, scheduled_time=slot, dispensing_status=dispensing)

    assert is_workflow_overdue(occurrence("08:00"), NOW)
    assert not is_workflow_overdue(occurrence("13:00"), NOW)
    assert not is_workflow_overdue(occurrence("08:00", dispensing="completed"), NOW)
    assert not is_workflow_overdue(occurrence("08:00", dispensing="failed"), NOW)
    assert is_workflow_overdue(occurrence("20:00", day=date(2024, 1, 31)), NOW)


def test_overdue_count_by_date():
    records = [
        MedicationWorkflowRecord(scheduled_date=date(2024, 1, 31), scheduled_time="08:00", dispensing_status="pending"),
        MedicationWorkflowRecord(scheduled_date=date(2024, 1, 31), scheduled_time="20:00", dispensing_status="completed"),
        MedicationWorkflowRecord(scheduled_date=date(2024, 2, 1), scheduled_time="08:00", dispensing_status="pending"),
        MedicationWorkflowRecord(scheduled_date=date(2024, 2, 1), scheduled_time="18:00", dispensing_status="pending"),
    ]
    counts = calculate_overdue_count_by_date(records, [date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 2)], NOW)
    assert counts == {date(2024, 1, 31): 1, date(2024, 2, 1): 1, date(2024, 2, 2): 0}


def test_overdue_by_preparation_method(db, make):
    patient = make.patient()
    advanced = make.prescription(patient, preparation_method="advanced")
    immediate = make.prescription(patient, preparation_method="immediate")
    custom = make.prescription(patient, preparation_method="custom")
    records = [
        make.record(advanced, scheduled_time="08:00"),
        make.record(advanced, scheduled_time="09:00", dispensing="completed"),
        make.record(immediate, scheduled_time="08:00"),
        make.record(custom, scheduled_time="08:00"),
    ]

    counts = count_overdue_by_preparation_method(db, records, NOW)

    assert counts == {"all": 3, "advanced": 1, "immediate": 1}


def test_patients_with_overdue_workflow(db, make):
    chan = make.patient("陳大文")
    wong = make.patient("黃美玲")
    gone = make.patient("已退住院友", residency_status="已退住")
    rx_chan, rx_wong, rx_gone = (make.prescription(p) for p in (chan, wong, gone))
    make.record(rx_chan, scheduled_time="08:00")
    make.record(rx_wong, scheduled_time="08:00")
    make.record(rx_wong, scheduled_time="10:00")
    make.record(rx_wong, scheduled_time="18:00")  # not yet due
    make.record(rx_gone, scheduled_time="08:00")

    summaries = get_patients_with_overdue_workflow(db, date_from=date(2024, 2, 1), now=NOW)

    assert [(s.patient_id, s.overdue_count) for s in summaries] == [(wong.id, 2), (chan.id, 1)]
    assert summaries[0].patient_name == "黃美玲"
