"""HTTP surface: end-to-end flow through the routers with get_db overridden."""
import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_db
from app.main import app


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_patient(client, name="陳大文", **kw):
    r = client.post("/patients", json={"name": name, **kw})
    assert r.status_code == 200, r.text
    return r.json()


def create_prescription(client, patient_id, **kw):
    body = {
        "patient_id": patient_id,
        "medication_name": "Amlodipine 5mg",
        "medication_time_slots": ["08:00"],
        "start_date": "2024-01-01",
    }
    body.update(kw)
    r = client.post("/prescriptions", json=body)
    assert r.status_code == 200, r.text
    return r.json()


def generate(client, target_date="2024-02-01"):
    r = client.post("/generation/daily", json={"target_date": target_date})
    assert r.status_code == 200, r.text
    return r.json()


def records(client, **params):
    r = client.get("/workflow/records", params=params)
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_full_workflow_over_http(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"], medication_time_slots=["08:00", "20:00"])

    result = generate(client)
    assert result["records_generated"] == 2

    record = records(client, patient_id=patient["id"], scheduled_date="2024-02-01")[0]
    assert record["scheduled_time"] == "08:00"

    r = client.post(f"/workflow/records/{record['id']}/prepare", json={"staff_id": "nurse-chan"})
    assert r.status_code == 200
    assert r.json()["preparation_status"] == "completed"

    r = client.post(f"/workflow/records/{record['id']}/verify", json={"staff_id": "nurse-wong"})
    assert r.json()["verification_status"] == "completed"

    r = client.post(f"/workflow/records/{record['id']}/dispense", json={"staff_id": "nurse-lee"})
    body = r.json()
    assert r.status_code == 200
    assert body["blocked_by_inspection"] is False
    assert body["record"]["dispensing_status"] == "completed"


def test_out_of_order_step_is_409(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])
    generate(client)
    record = records(client)[0]

    r = client.post(f"/workflow/records/{record['id']}/verify", json={"staff_id": "nurse-wong"})

    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "precondition_failed"
    assert detail["record_id"] == record["id"]
    assert detail["step"] == "verification"


def test_missing_record_is_404(client):
    r = client.post("/workflow/records/999/prepare", json={"staff_id": "nurse-chan"})
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "occurrence_not_found"


def test_other_without_custom_reason_is_400(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])
    generate(client)
    record_id = records(client)[0]["id"]

    r = client.post(f"/workflow/records/{record_id}/prepare",
                    json={"staff_id": "nurse-chan", "failure_reason": "其他"})

    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "validation_error"

    r = client.post(f"/workflow/records/{record_id}/prepare",
                    json={"staff_id": "nurse-chan", "failure_reason": "藥物不足"})
    body = r.json()
    assert body["preparation_status"] == "failed"
    assert body["dispensing_status"] == "pending"
    assert body["failed_step"] == "preparation"
    assert body["dispensing_failure_reason"] == "藥物不足"


def test_inspection_veto_over_http(client):
    patient = create_patient(client)
    rx = create_prescription(client, patient["id"], inspection_rules=[
        {"vital_sign_type": "上壓", "condition_operator": ">", "condition_value": 160},
    ])
    assert rx["inspection_rules"][0]["condition_operator"] == "gt"
    generate(client)
    record_id = records(client)[0]["id"]
    client.post(f"/workflow/records/{record_id}/prepare", json={"staff_id": "nurse-chan"})
    client.post(f"/workflow/records/{record_id}/verify", json={"staff_id": "nurse-wong"})

    preview = client.post("/workflow/inspection-check", json={
        "prescription_id": rx["id"], "patient_id": patient["id"], "fresh_reading": {"上壓": 172},
    }).json()
    assert preview["can_dispense"] is False

    r = client.post(f"/workflow/records/{record_id}/dispense",
                    json={"staff_id": "nurse-lee", "fresh_reading": {"上壓": 172}})
    body = r.json()
    assert r.status_code == 200
    assert body["blocked_by_inspection"] is True
    assert body["record"]["dispensing_status"] == "failed"
    assert body["record"]["dispensing_failure_reason"] == "略去"
    assert body["inspection"]["blocked_rules"][0]["actual_value"] == 172

    r = client.post(f"/workflow/records/{record_id}/revert", json={"step": "dispensing"})
    assert r.json()["dispensing_status"] == "pending"
    assert r.json()["dispensing_failure_reason"] is None


def test_batch_failure_over_http(client):
    patient = create_patient(client)
    for name in ("Amlodipine", "Metformin"):
        create_prescription(client, patient["id"], medication_name=name)
    generate(client)
    for record in records(client):
        client.post(f"/workflow/records/{record['id']}/prepare", json={"staff_id": "nurse-chan"})
        client.post(f"/workflow/records/{record['id']}/verify", json={"staff_id": "nurse-wong"})

    r = client.post("/workflow/batch-failure", json={
        "patient_id": patient["id"],
        "scheduled_date": "2024-02-01",
        "scheduled_time": "08:00",
        "reason": "回家",
    })

    body = r.json()
    assert r.status_code == 200
    assert body["applied"] is True
    assert body["total"] == 2
    assert len(body["succeeded_ids"]) == 2
    assert {rec["dispensing_failure_reason"] for rec in records(client)} == {"回家"}

    r = client.post("/workflow/batch-failure", json={
        "patient_id": patient["id"], "scheduled_date": "2024-02-01", "scheduled_time": "08:00", "reason": "拒服",
    })
    assert r.status_code == 400


def test_one_click_over_http(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"], preparation_method="advanced", medication_time_slots=["08:00", "20:00"])
    generate(client)

    body = {"patient_id": patient["id"], "scheduled_date": "2024-02-01", "staff_id": "nurse-chan"}
    r = client.post("/workflow/one-click/prepare", json=body)
    assert r.status_code == 200
    assert r.json()["total"] == 2
    assert len(r.json()["succeeded_ids"]) == 2

    r = client.post("/workflow/one-click/verify", json={**body, "staff_id": "nurse-wong"})
    assert len(r.json()["succeeded_ids"]) == 2

    r = client.post("/workflow/one-click/dispense", json={**body, "staff_id": "nurse-lee"})
    assert r.json()["action"] == "dispense"
    assert {rec["dispensing_status"] for rec in records(client)} == {"completed"}

    assert client.post("/workflow/one-click/administer", json=body).status_code == 404
    assert client.post("/workflow/one-click/prepare", json={**body, "staff_id": " "}).status_code == 422


def test_hospitalised_patient_is_excluded(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])
    r = client.post(f"/patients/{patient['id']}/episodes", json={"episode_type": "入院", "start_date": "2024-01-30"})
    assert r.status_code == 200

    result = generate(client)

    assert result["records_generated"] == 0
    assert result["excluded_patients"] == [{"patient_id": patient["id"], "reason": "住院中"}]


def test_generation_marker_and_rerun(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])

    assert generate(client)["records_generated"] == 1
    assert generate(client)["skipped"] is True

    tasks = client.get("/generation/tasks").json()
    assert tasks[0]["task_name"] == "Daily Medication Workflow Generation"
    assert tasks[0]["status"] == "completed"


def test_prescription_added_after_generation_is_picked_up(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])
    assert generate(client, "2024-03-01")["records_generated"] == 1

    late = create_prescription(client, patient["id"], medication_name="Metformin",
                               medication_time_slots=["18:00"], start_date="2024-03-01")
    rerun = generate(client, "2024-03-01")

    assert rerun["skipped"] is False
    assert rerun["records_generated"] == 1
    late_records = [r for r in records(client, scheduled_date="2024-03-01") if r["prescription_id"] == late["id"]]
    assert [r["scheduled_time"] for r in late_records] == ["18:00"]


def test_closing_episode_reopens_generation(client):
    patient = create_patient(client)
    create_prescription(client, patient["id"])
    episode = client.post(f"/patients/{patient['id']}/episodes",
                          json={"episode_type": "入院", "start_date": "2024-02-20"}).json()
    assert generate(client, "2024-03-01")["records_generated"] == 0

    r = client.post(f"/patients/{patient['id']}/episodes/{episode['id']}/close", params={"end_date": "2024-02-28"})
    assert r.status_code == 200

    assert generate(client, "2024-03-01")["records_generated"] == 1


def test_manual_duplicate_occurrence_is_409(client):
    patient = create_patient(client)
    rx = create_prescription(client, patient["id"])
    generate(client)

    r = client.post("/workflow/records", json={
        "prescription_id": rx["id"], "patient_id": patient["id"],
        "scheduled_date": "2024-02-01", "scheduled_time": "8:00",
    })
    assert r.status_code == 409
    assert f"Occurrence {records(client)[0]['id']} already exists" in r.json()["detail"]

    r = client.post("/workflow/records", json={
        "prescription_id": rx["id"], "patient_id": patient["id"],
        "scheduled_date": "2024-02-01", "scheduled_time": "12:30",
    })
    assert r.status_code == 200
    assert r.json()["scheduled_time"] == "12:30"


def test_invalid_prescription_payloads(client):
    patient = create_patient(client)

    r = client.post("/prescriptions", json={
        "patient_id": patient["id"], "medication_name": "X", "start_date": "2024-01-01",
        "medication_time_slots": ["25:00"],
    })
    assert r.status_code == 422

    r = client.post("/prescriptions", json={
        "patient_id": patient["id"], "medication_name": "X", "start_date": "2024-01-01",
        "end_date": "2023-12-01",
    })
    assert r.status_code == 400
